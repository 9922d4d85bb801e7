"""Error types and host-failure tracking.

Host failures are expected: tabs close and groups vanish while an
operation is in flight. They are caught where they happen, logged, and
recorded here so they show up in the daemon status:
- Exception hierarchy for host, command and config errors
- Severity classification of host failures
- Bounded window of recent failures with per-service counts
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from collections import deque


class RolotabsError(Exception):
    """Base error for the package."""


class HostError(RolotabsError):
    """A host (browser) operation failed."""


class HostEntityMissing(HostError):
    """The bookmark, tab or group targeted by a host call no longer exists."""

    def __init__(self, kind: str, entity_id: Any):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class CommandError(RolotabsError):
    """A command message was malformed or of an unknown type."""


class ConfigError(RolotabsError):
    """Configuration could not be loaded."""


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass
class ErrorEvent:
    """Represents a swallowed host failure."""
    timestamp: datetime
    service: str
    operation: str
    error_type: str
    message: str
    severity: ErrorSeverity
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'service': self.service,
            'operation': self.operation,
            'error_type': self.error_type,
            'message': self.message,
            'severity': self.severity.value,
            'context': self.context
        }


class HostErrorTracker:
    """Aggregates host failures that were handled locally."""

    def __init__(self, window_size: int = 100):
        """
        Initialize the tracker.

        Args:
            window_size: Number of recent failures to keep
        """
        self.window_size = window_size
        self.errors: deque = deque(maxlen=window_size)
        self.error_counts: Dict[str, int] = {}

    def record(self,
               service: str,
               operation: str,
               error: Exception,
               **context) -> ErrorEvent:
        """Record a failure and return the stored event."""
        event = ErrorEvent(
            timestamp=datetime.now(),
            service=service,
            operation=operation,
            error_type=type(error).__name__,
            message=str(error),
            severity=self._classify_severity(error),
            context=context
        )
        self.errors.append(event)

        key = f"{service}:{event.error_type}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        return event

    def _classify_severity(self, error: Exception) -> ErrorSeverity:
        """Vanished entities are routine; other host errors less so."""
        if isinstance(error, HostEntityMissing):
            return ErrorSeverity.LOW
        elif isinstance(error, HostError):
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.HIGH

    def recent(self, limit: Optional[int] = None) -> List[ErrorEvent]:
        errors = list(self.errors)
        if limit is not None:
            errors = errors[-limit:]
        return errors

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary."""
        by_severity = {'low': 0, 'medium': 0, 'high': 0}
        for error in self.errors:
            by_severity[error.severity.name.lower()] += 1

        top_errors = sorted(
            self.error_counts.items(),
            key=lambda x: x[1],
            reverse=True
        )[:5]

        return {
            'total_errors': sum(self.error_counts.values()),
            'recent_errors': len(self.errors),
            'by_severity': by_severity,
            'top_errors': [{'error': k, 'count': v} for k, v in top_errors],
        }

    def clear(self) -> None:
        self.errors.clear()
        self.error_counts.clear()
