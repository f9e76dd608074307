"""
Simulated ledger for local runs and tests.

Behaves like the external ledger from the coordinator's point of view:
- Charges a registration fee and assigns 3 distinct keys from 0-9
- Opens requests under a random key and publishes them as events
- Accepts one answer per oracle per request from oracles holding the key
- Keeps the full event history so subscribers can replay from the start

It records answers but does not tally them; closing a request is an
explicit call with the answer to publish.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, FrozenSet, Tuple


KEY_DOMAIN = 10
KEYS_PER_ORACLE = 3
REGISTRATION_FEE = 1.0

RequestId = Tuple[int, str, int]


class LedgerRejection(Exception):
    """The simulated ledger refused an operation."""

    def __init__(self, status: int, detail: str):
        super().__init__(detail)
        self.status = status
        self.detail = detail


@dataclass
class OpenedRequest:
    """A request and the answers recorded for it."""
    request_key: int
    subject_id: str
    timestamp: int
    is_open: bool = True
    responses: Dict[str, int] = field(default_factory=dict)

    @property
    def request_id(self) -> RequestId:
        return (self.request_key, self.subject_id, self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_key': self.request_key,
            'subject_id': self.subject_id,
            'timestamp': self.timestamp,
            'is_open': self.is_open,
            'responses': dict(self.responses)
        }


class SimulatedLedger:
    """
    In-memory ledger.

    All state lives in one event loop; no locking.
    """

    def __init__(
        self,
        num_accounts: int = 100,
        registration_fee: float = REGISTRATION_FEE,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            num_accounts: Number of accounts to expose
            registration_fee: Minimum stake for oracle registration
            rng: Random source for key assignment and request keys
        """
        self.accounts = [f"0x{i:040x}" for i in range(num_accounts)]
        self.registration_fee = registration_fee
        self.rng = rng or random.Random()

        self.oracles: Dict[str, FrozenSet[int]] = {}
        self.requests: Dict[RequestId, OpenedRequest] = {}

        self._history: List[Dict[str, Any]] = []
        self._subscribers: List[asyncio.Queue] = []

    # Events

    def _emit(self, event: Dict[str, Any]):
        self._history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def subscribe(self, from_start: bool = True) -> asyncio.Queue:
        """
        Get a queue receiving every future event.

        With from_start the queue is pre-filled with the event history.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if from_start:
            for event in self._history:
                queue.put_nowait(event)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    # Oracles

    def register_oracle(self, identity: str, stake: float) -> FrozenSet[int]:
        """
        Register an oracle and assign its keys.

        Raises:
            LedgerRejection: 402 if the stake is below the fee, 409 if already registered
        """
        if stake < self.registration_fee:
            raise LedgerRejection(
                402, f"Registration fee is {self.registration_fee}, got {stake}"
            )
        if identity in self.oracles:
            raise LedgerRejection(409, f"Oracle already registered: {identity}")

        keys = frozenset(self.rng.sample(range(KEY_DOMAIN), KEYS_PER_ORACLE))
        self.oracles[identity] = keys
        return keys

    def get_keys(self, identity: str) -> FrozenSet[int]:
        """
        Raises:
            LedgerRejection: 404 if the identity is not a registered oracle
        """
        keys = self.oracles.get(identity)
        if keys is None:
            raise LedgerRejection(404, f"Not a registered oracle: {identity}")
        return keys

    # Requests

    def open_request(
        self,
        subject_id: str,
        timestamp: int,
        request_key: Optional[int] = None
    ) -> OpenedRequest:
        """Open a request and publish a request_opened event."""
        if request_key is None:
            request_key = self.rng.randrange(KEY_DOMAIN)

        request = OpenedRequest(request_key, subject_id, timestamp)
        self.requests[request.request_id] = request

        self._emit({
            'event': 'request_opened',
            'request_key': request_key,
            'subject_id': subject_id,
            'timestamp': timestamp
        })
        return request

    def submit_response(
        self,
        request_key: int,
        subject_id: str,
        timestamp: int,
        identity: str,
        answer: int
    ) -> OpenedRequest:
        """
        Record one oracle's answer.

        Raises:
            LedgerRejection: 403 unknown oracle or key not held, 404 request
                unknown or closed, 409 oracle already answered
        """
        keys = self.oracles.get(identity)
        if keys is None:
            raise LedgerRejection(403, f"Not a registered oracle: {identity}")
        if request_key not in keys:
            raise LedgerRejection(403, f"Key {request_key} not assigned to {identity}")

        request = self.requests.get((request_key, subject_id, timestamp))
        if request is None or not request.is_open:
            raise LedgerRejection(404, "Request is not open")
        if identity in request.responses:
            raise LedgerRejection(409, f"{identity} already answered this request")

        request.responses[identity] = answer
        return request

    def close_request(
        self,
        request_key: int,
        subject_id: str,
        timestamp: int,
        answer: int
    ) -> OpenedRequest:
        """Close a request and publish a request_resolved event."""
        request = self.requests.get((request_key, subject_id, timestamp))
        if request is None or not request.is_open:
            raise LedgerRejection(404, "Request is not open")

        request.is_open = False
        self._emit({
            'event': 'request_resolved',
            'request_key': request_key,
            'subject_id': subject_id,
            'timestamp': timestamp,
            'answer': answer
        })
        return request
