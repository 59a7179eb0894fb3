"""Command-line interface (``relay``)."""
