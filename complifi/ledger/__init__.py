"""
CompliFi Ledger - account substrate and audit event sinks

The account store is the source of truth for every compliance record.
"""

from complifi.ledger.accounts import AccountStore, Transaction, derive_address
from complifi.ledger.events import EventLog, EventLogEntry, EventSink, MemoryEventSink

__all__ = [
    "AccountStore",
    "Transaction",
    "derive_address",
    "EventLog",
    "EventLogEntry",
    "EventSink",
    "MemoryEventSink",
]
