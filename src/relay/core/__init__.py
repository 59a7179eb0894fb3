"""Relay Core -- infrastructure primitives shared by the delivery pipeline.

Architecture::

    errors.py      Typed error hierarchy (RelayError + taxonomy)
    logging.py     structlog configuration, get_logger, LogContext
    settings.py    RelaySettings (RELAY_* environment)
    protocols.py   Connection protocol (DB-API subset)
    schema.py      relay_jobs / relay_locks DDL
    store.py       KeyedAtomicStore (memory, Redis) with compare-and-swap
    hashing.py     Idempotency keys, payload signatures, cache keys
    locks.py       TTL advisory locks
"""
