"""
Service configuration for the oracle coordinator.

Read once at startup from defaults, an optional JSON file and CLI flags.
"""

from dataclasses import dataclass, field, fields
from typing import Optional, List, Dict, Any
import json

from ledger.client import events_url_for


DEFAULT_ANSWERS = [10, 20, 30, 40, 50]


@dataclass
class ServiceConfig:
    """
    Configuration for an oracle coordinator process.

    Covers the ledger connection, the oracle pool and operational settings.
    """

    # Ledger connection
    ledger_url: str = "http://localhost:8545"
    events_url: Optional[str] = None  # derived from ledger_url if unset
    ledger_timeout: float = 30.0  # seconds
    ledger_retry_attempts: int = 3
    ledger_retry_delay: float = 1.0  # seconds

    # Oracle pool
    pool_size: int = 20
    stake: float = 1.0
    answers: List[int] = field(default_factory=lambda: list(DEFAULT_ANSWERS))
    identities: List[str] = field(default_factory=list)  # empty: take ledger accounts
    identity_offset: int = 10  # first ledger account used when identities is empty
    seed: Optional[int] = None

    # Event stream
    reconnect_max_attempts: Optional[int] = None  # None retries forever
    reconnect_initial_backoff: float = 1.0  # seconds
    reconnect_max_backoff: float = 60.0  # seconds

    # Status API
    status_host: str = "0.0.0.0"
    status_port: Optional[int] = None  # None disables the status API

    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    def __post_init__(self):
        """Validate settings and derive the event stream URL."""
        if self.pool_size <= 0:
            raise ValueError(f"pool_size must be positive, got {self.pool_size}")
        if self.stake < 0:
            raise ValueError(f"stake must not be negative, got {self.stake}")
        if not self.answers:
            raise ValueError("answers must not be empty")
        if len(set(self.answers)) != len(self.answers):
            raise ValueError(f"answers must be unique, got {self.answers}")
        if self.identity_offset < 0:
            raise ValueError(f"identity_offset must not be negative, got {self.identity_offset}")
        if self.identities and len(self.identities) < self.pool_size:
            raise ValueError(
                f"{len(self.identities)} identities configured for a pool of {self.pool_size}"
            )
        if self.ledger_retry_attempts < 1:
            raise ValueError(
                f"ledger_retry_attempts must be at least 1, got {self.ledger_retry_attempts}"
            )
        if self.reconnect_max_attempts is not None and self.reconnect_max_attempts < 0:
            raise ValueError("reconnect_max_attempts must not be negative")

        self.ledger_url = self.ledger_url.rstrip('/')
        if self.events_url is None:
            self.events_url = events_url_for(self.ledger_url)

    def select_identities(self, accounts: List[str]) -> List[str]:
        """
        Choose the candidate identities for the pool.

        Args:
            accounts: Ledger accounts, used when no identities are configured

        Returns:
            pool_size candidate identities
        """
        if self.identities:
            return list(self.identities[:self.pool_size])
        return list(accounts[self.identity_offset:self.identity_offset + self.pool_size])

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert config to dictionary.

        Returns:
            Configuration as dictionary
        """
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ServiceConfig':
        """
        Create config from dictionary. Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(config_dict) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**config_dict)

    @classmethod
    def from_json_file(cls, path: str) -> 'ServiceConfig':
        """
        Load config from JSON file.

        Args:
            path: Path to JSON config file

        Returns:
            ServiceConfig instance
        """
        with open(path, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def to_json_file(self, path: str):
        """
        Save config to JSON file.

        Args:
            path: Path to save JSON config
        """
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"ServiceConfig(ledger='{self.ledger_url}', "
            f"pool_size={self.pool_size}, "
            f"stake={self.stake}, "
            f"answers={self.answers})"
        )
