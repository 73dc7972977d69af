"""Process-lifetime counters."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass
class Stats:
    """
    Counters reported by the uptime command.

    Attributes
    ----------
    started_at : datetime
        Process start time, UTC.
    announced : int
        Number of entries announced since start.
    last_latency_ms : float | None
        Round trip of the last answered heartbeat, None before the first.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    announced: int = 0
    last_latency_ms: float | None = None

    def uptime(self) -> timedelta:
        """Elapsed time since start, whole seconds."""
        elapsed = datetime.now(timezone.utc) - self.started_at
        return timedelta(seconds=int(elapsed.total_seconds()))
