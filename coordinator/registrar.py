"""
Registrar: registers candidate identities with the ledger.

Answers are drawn up front in candidate order. Each candidate then runs as
its own task: register with stake, read back the assigned keys, build the
Oracle. A failure on one
candidate is logged and excluded; it never affects the others.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional, List, Sequence

from coordinator.registry import Oracle, OracleRegistry
from coordinator.stats import ServiceStats
from ledger.client import LedgerClient
from ledger.errors import LedgerError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of registering one candidate: an oracle or an error."""
    identity: str
    oracle: Optional[Oracle] = None
    error: Optional[LedgerError] = None

    @property
    def ok(self) -> bool:
        return self.oracle is not None


@dataclass(frozen=True)
class RegistrationSummary:
    """Result of the whole registration phase."""
    attempted: int
    registered: int
    failures: List[RegistrationResult]

    @property
    def failed(self) -> int:
        return len(self.failures)


class Registrar:
    """
    Drives the registration phase and populates the registry.

    The registry is sealed when the phase completes, whatever the outcome.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        registry: OracleRegistry,
        stake: float,
        answers: Sequence[int],
        rng: Optional[random.Random] = None,
        stats: Optional[ServiceStats] = None
    ):
        """
        Initialize registrar.

        Args:
            ledger: Ledger client
            registry: Registry to populate
            stake: Stake sent with every registration
            answers: Closed set of answers an oracle may hold
            rng: Random source for answer draws
            stats: Counters to update
        """
        if not answers:
            raise ValueError("answers must not be empty")

        self.ledger = ledger
        self.registry = registry
        self.stake = stake
        self.answers = list(answers)
        self.rng = rng or random.Random()
        self.stats = stats or ServiceStats()

    async def register_one(self, identity: str, answer: Optional[int] = None) -> RegistrationResult:
        """
        Register one candidate.

        Never raises a ledger error; failures come back as a tagged result.

        Args:
            identity: Candidate identity
            answer: Answer the oracle will hold (drawn if None)
        """
        if answer is None:
            answer = self.rng.choice(self.answers)

        try:
            await self.ledger.register(identity, self.stake)
            keys = await self.ledger.get_assigned_keys(identity)
        except LedgerError as e:
            logger.warning(f"Oracle registration failed: {e}")
            return RegistrationResult(identity=identity, error=e)

        oracle = Oracle(identity=identity, keys=keys, answer=answer)

        logger.info(f"Oracle registered: {identity} keys={sorted(keys)} answer={answer}")
        return RegistrationResult(identity=identity, oracle=oracle)

    async def register_all(self, identities: Sequence[str]) -> RegistrationSummary:
        """
        Register every candidate concurrently, then seal the registry.

        Oracles are added in candidate order so the registry layout does not
        depend on which registration finished first.

        Args:
            identities: Candidate identities

        Returns:
            Summary with counts and the failed results
        """
        self.stats.candidates += len(identities)

        # Draw in candidate order so a seeded rng fixes each oracle's answer
        answers = [self.rng.choice(self.answers) for _ in identities]

        results = await asyncio.gather(
            *(self.register_one(identity, answer) for identity, answer in zip(identities, answers))
        )

        failures = []
        for result in results:
            if result.ok:
                self.registry.add(result.oracle)
                self.stats.oracles_registered += 1
            else:
                failures.append(result)
                self.stats.registration_failures += 1

        self.registry.seal()

        summary = RegistrationSummary(
            attempted=len(identities),
            registered=len(identities) - len(failures),
            failures=failures
        )
        logger.info(f"Oracles registered: {summary.registered}/{summary.attempted}")
        return summary
