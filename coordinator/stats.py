"""
Operational counters for the coordinator.

Operators see counts rather than raw exceptions. Every per-unit outcome
(registration, observed request, submission) bumps one of these.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ServiceStats:
    """Counter snapshot for one service run."""
    candidates: int = 0
    oracles_registered: int = 0
    registration_failures: int = 0
    requests_observed: int = 0
    requests_resolved: int = 0
    dispatches_completed: int = 0
    submissions_sent: int = 0
    submissions_accepted: int = 0
    submissions_rejected: int = 0
    submission_transport_errors: int = 0
    reconnects: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    last_event_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logs and API responses."""
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        data['last_event_at'] = self.last_event_at.isoformat() if self.last_event_at else None
        return data
