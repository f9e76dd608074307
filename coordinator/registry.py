"""
Oracle registry for the coordinator.

Holds every oracle this process operates, indexed by key for request
matching. The registry is written only during the registration phase and
sealed before any request is dispatched; after sealing it is read-only and
safe to share between concurrent dispatches.
"""

from typing import Optional, List, Dict, Any, FrozenSet, Tuple, Iterator
from dataclasses import dataclass, field
from datetime import datetime
import logging


logger = logging.getLogger(__name__)

KEYS_PER_ORACLE = 3


@dataclass(frozen=True)
class Oracle:
    """A registered oracle with its assigned keys and fixed answer."""
    identity: str
    keys: FrozenSet[int]
    answer: int
    registered_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.keys, frozenset):
            object.__setattr__(self, 'keys', frozenset(self.keys))
        if len(self.keys) != KEYS_PER_ORACLE:
            raise ValueError(
                f"Oracle {self.identity} needs exactly {KEYS_PER_ORACLE} keys, "
                f"got {sorted(self.keys)}"
            )

    def matches(self, request_key: int) -> bool:
        """True if this oracle is eligible to answer requests with this key."""
        return request_key in self.keys

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            'identity': self.identity,
            'keys': sorted(self.keys),
            'answer': self.answer,
            'registered_at': self.registered_at.isoformat()
        }


class RegistrySealedError(RuntimeError):
    """Raised when the registry is written after the registration phase."""


class OracleRegistry:
    """
    In-memory oracle table with a key index.

    Oracles are kept in registration order; the index maps each key to the
    oracles holding it so matching never scans the whole pool.
    """

    def __init__(self):
        self._oracles: Dict[str, Oracle] = {}
        self._by_key: Dict[int, List[Oracle]] = {}
        self._sealed = False

    def add(self, oracle: Oracle) -> None:
        """
        Add an oracle.

        Raises:
            RegistrySealedError: If the registration phase is over
            ValueError: If the identity is already present
        """
        if self._sealed:
            raise RegistrySealedError(
                f"Cannot add {oracle.identity}: registry is sealed"
            )
        if oracle.identity in self._oracles:
            raise ValueError(f"Oracle already in registry: {oracle.identity}")

        self._oracles[oracle.identity] = oracle
        for key in oracle.keys:
            self._by_key.setdefault(key, []).append(oracle)

    def seal(self) -> None:
        """End the registration phase. The registry is read-only afterwards."""
        if not self._sealed:
            self._sealed = True
            logger.debug(f"Registry sealed with {len(self._oracles)} oracles")

    @property
    def sealed(self) -> bool:
        return self._sealed

    def match(self, request_key: int) -> Tuple[Oracle, ...]:
        """
        Get oracles whose key set contains request_key.

        Returns:
            Matching oracles in registration order
        """
        return tuple(self._by_key.get(request_key, ()))

    def get(self, identity: str) -> Optional[Oracle]:
        return self._oracles.get(identity)

    def all(self) -> List[Oracle]:
        """All oracles in registration order."""
        return list(self._oracles.values())

    def key_coverage(self) -> Dict[int, int]:
        """Number of oracles holding each key."""
        return {key: len(oracles) for key, oracles in sorted(self._by_key.items())}

    def __len__(self) -> int:
        return len(self._oracles)

    def __iter__(self) -> Iterator[Oracle]:
        return iter(list(self._oracles.values()))

    def __contains__(self, identity: object) -> bool:
        return identity in self._oracles
