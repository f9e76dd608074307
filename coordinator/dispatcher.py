"""
Dispatcher: matches requests to oracles and submits their answers.

Matching is a pure function of (request key, sealed registry). Every
matching oracle gets exactly one submission per dispatch; submissions run
concurrently and each one's outcome is captured independently. The ledger,
not the dispatcher, rejects duplicates.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Set, Tuple

from coordinator.registry import Oracle, OracleRegistry
from coordinator.stats import ServiceStats
from ledger.client import LedgerClient
from ledger.errors import SubmissionRejected, TransportLost
from ledger.events import Request


logger = logging.getLogger(__name__)


class SubmissionOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one oracle's submission for one request."""
    identity: str
    answer: int
    outcome: SubmissionOutcome
    detail: Optional[str] = None


@dataclass
class DispatchReport:
    """All submission outcomes for one dispatched request."""
    request: Request
    results: List[SubmissionResult] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def matched(self) -> List[str]:
        return [r.identity for r in self.results]

    def count(self, outcome: SubmissionOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)


class Dispatcher:
    """
    Fans a request out to every matching oracle.

    dispatch() awaits all submissions for one request; schedule() runs a
    dispatch as a background task so the caller can return immediately.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        registry: OracleRegistry,
        stats: Optional[ServiceStats] = None
    ):
        self.ledger = ledger
        self.registry = registry
        self.stats = stats or ServiceStats()
        self._pending: Set[asyncio.Task] = set()

    def match(self, request_key: int) -> Tuple[Oracle, ...]:
        """
        Get the oracles eligible to answer a request key.

        Raises:
            RuntimeError: If the registration phase has not completed
        """
        if not self.registry.sealed:
            raise RuntimeError("Cannot dispatch before registration completes")
        return self.registry.match(request_key)

    async def _submit(self, oracle: Oracle, request: Request) -> SubmissionResult:
        """Submit one oracle's answer, reducing any ledger failure to a result."""
        self.stats.submissions_sent += 1
        try:
            await self.ledger.submit(
                request.request_key,
                request.subject_id,
                request.timestamp,
                oracle.identity,
                oracle.answer
            )
        except SubmissionRejected as e:
            self.stats.submissions_rejected += 1
            logger.warning(f"Rejected: {e}")
            return SubmissionResult(oracle.identity, oracle.answer, SubmissionOutcome.REJECTED, str(e))
        except TransportLost as e:
            self.stats.submission_transport_errors += 1
            logger.warning(f"Submission from {oracle.identity} lost: {e}")
            return SubmissionResult(
                oracle.identity, oracle.answer, SubmissionOutcome.TRANSPORT_ERROR, str(e)
            )

        self.stats.submissions_accepted += 1
        logger.info(
            f"Oracle response: {oracle.identity} answered {oracle.answer} "
            f"for {request.subject_id} (key {request.request_key})"
        )
        return SubmissionResult(oracle.identity, oracle.answer, SubmissionOutcome.ACCEPTED)

    async def dispatch(self, request: Request) -> DispatchReport:
        """
        Submit answers from every oracle matching the request.

        Args:
            request: Request observed on the ledger

        Returns:
            Report with one result per matching oracle
        """
        oracles = self.match(request.request_key)
        start = time.time()

        logger.debug(
            f"Dispatching {request.subject_id} (key {request.request_key}) "
            f"to {len(oracles)} oracles"
        )

        results = await asyncio.gather(*(self._submit(o, request) for o in oracles))

        report = DispatchReport(
            request=request,
            results=list(results),
            duration_s=time.time() - start
        )
        self.stats.dispatches_completed += 1

        logger.info(
            f"Dispatched key {request.request_key} for {request.subject_id}: "
            f"{report.count(SubmissionOutcome.ACCEPTED)}/{len(oracles)} accepted"
        )
        return report

    def schedule(self, request: Request) -> asyncio.Task:
        """Dispatch in the background and return the task."""
        task = asyncio.create_task(self.dispatch(request))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Dispatch task failed: {task.exception()}")

    def pending(self) -> int:
        """Number of in-flight dispatches."""
        return len(self._pending)

    async def drain(self):
        """Wait for every in-flight dispatch to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
