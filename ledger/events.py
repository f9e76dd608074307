"""
Ledger event types and decoding.

The ledger publishes JSON events over its WebSocket stream:

    {"event": "request_opened", "request_key": 4, "subject_id": "...", "timestamp": 1700000000}
    {"event": "request_resolved", "request_key": 4, "subject_id": "...", "timestamp": ..., "answer": 20}

Flight-status ledgers publish ``airline`` and ``flight`` instead of
``subject_id``; those are folded into a single subject identifier.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union


REQUEST_OPENED = "request_opened"
REQUEST_RESOLVED = "request_resolved"


def _subject_from(data: Dict[str, Any]) -> str:
    subject_id = data.get('subject_id')
    if subject_id is not None:
        return str(subject_id)

    airline = data.get('airline')
    flight = data.get('flight')
    if airline is None or flight is None:
        raise ValueError("Event has no subject_id and no airline/flight pair")
    return f"{airline}:{flight}"


@dataclass(frozen=True)
class Request:
    """A request for off-chain answers, as opened on the ledger."""
    request_key: int
    subject_id: str
    timestamp: int

    @classmethod
    def from_event(cls, data: Dict[str, Any]) -> 'Request':
        """Decode a request_opened event payload."""
        try:
            return cls(
                request_key=int(data['request_key']),
                subject_id=_subject_from(data),
                timestamp=int(data['timestamp'])
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed request event: {data!r}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_key': self.request_key,
            'subject_id': self.subject_id,
            'timestamp': self.timestamp
        }


@dataclass(frozen=True)
class RequestResolved:
    """Ledger finalized a request with an agreed answer."""
    request_key: int
    subject_id: str
    timestamp: int
    answer: int

    @classmethod
    def from_event(cls, data: Dict[str, Any]) -> 'RequestResolved':
        """Decode a request_resolved event payload."""
        try:
            return cls(
                request_key=int(data['request_key']),
                subject_id=_subject_from(data),
                timestamp=int(data['timestamp']),
                answer=int(data['answer'])
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed resolution event: {data!r}") from e


LedgerEvent = Union[Request, RequestResolved]


def decode_event(data: Dict[str, Any]) -> LedgerEvent:
    """
    Decode a raw event dictionary.

    Args:
        data: Parsed JSON event

    Returns:
        Request or RequestResolved

    Raises:
        ValueError: If the event type is unknown or fields are missing
    """
    if not isinstance(data, dict):
        raise ValueError(f"Event is not an object: {data!r}")

    event = data.get('event')

    if event == REQUEST_OPENED:
        return Request.from_event(data)
    if event == REQUEST_RESOLVED:
        return RequestResolved.from_event(data)

    raise ValueError(f"Unknown event type: {event!r}")
