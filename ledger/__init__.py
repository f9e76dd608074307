"""
Ledger interface for the oracle coordinator.

The ledger is the external system of record. It:
- Registers oracles and assigns their keys
- Opens requests and publishes them as events
- Records oracle answers and decides the agreed result
"""

from ledger.client import LedgerClient
from ledger.errors import (
    LedgerError,
    RegistrationRejected,
    KeyQueryFailed,
    SubmissionRejected,
    TransportLost,
)
from ledger.events import Request, RequestResolved, decode_event

__version__ = "0.1.0"

__all__ = [
    "LedgerClient",
    "LedgerError",
    "RegistrationRejected",
    "KeyQueryFailed",
    "SubmissionRejected",
    "TransportLost",
    "Request",
    "RequestResolved",
    "decode_event",
]
