"""
Error taxonomy for ledger interactions.

Every failure the ledger client can surface maps onto one of these. The
coordinator treats all of them as per-unit failures except TransportLost on
the event subscription.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RegistrationRejected(LedgerError):
    """Ledger refused to register an identity (insufficient stake, duplicate)."""

    def __init__(self, identity: str, message: str, status: Optional[int] = None):
        super().__init__(f"Registration of {identity} rejected: {message}", status)
        self.identity = identity


class KeyQueryFailed(LedgerError):
    """Assigned keys for an identity could not be read back."""

    def __init__(self, identity: str, message: str, status: Optional[int] = None):
        super().__init__(f"Key query for {identity} failed: {message}", status)
        self.identity = identity


class SubmissionRejected(LedgerError):
    """Ledger refused one oracle's answer for one request."""

    def __init__(
        self,
        identity: str,
        request_key: int,
        message: str,
        status: Optional[int] = None
    ):
        super().__init__(
            f"Submission from {identity} for key {request_key} rejected: {message}",
            status
        )
        self.identity = identity
        self.request_key = request_key


class TransportLost(LedgerError):
    """Connection to the ledger failed or the event stream ended."""
