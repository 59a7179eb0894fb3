"""
Relay - outbound order delivery primitives.

Subpackages:
- relay.core: errors, logging, settings, shared store, hashing, locks
- relay.execution: rate limiting, circuit breaking, backoff, job queue
- relay.delivery: order payloads, courier providers, the delivery client
- relay.processing: order processor and event adapter
- relay.alerts: operator alert channels
"""

__version__ = "0.3.0"
