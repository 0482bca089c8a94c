"""
Audit Logger

DESIGN DECISION: Every write against the store is logged, with its outcome.
This provides:
1. Traceability of who changed what and which views went stale
2. Debugging capability when a write or a refresh fails
3. Correlation of all events belonging to one user action

The audit logger:
- Always writes a structured local log line
- Optionally keeps an in-memory history (bounded) for inspection
- Never raises: a logging problem must not turn a successful write into a
  failed one
"""

import logging
from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.config import get_settings
from finance_tracker.models.audit import AuditEvent, AuditSeverity


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog through stdlib logging with JSON output."""
    level = level or get_settings().app.log_level
    logging.getLogger("finance_tracker").setLevel(getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Args:
        history_size: How many recent events to keep in memory.
                      0 disables the history.
    """

    def __init__(self, history_size: int = 500):
        self._logger = structlog.get_logger("finance_tracker.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size or None)
        self._keep_history = history_size > 0

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was recorded.
        """
        log_dict = event.to_log_dict()

        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            logging.getLogger(__name__).error(
                "Failed to write audit event %s: %s", event.event_id, e
            )
            return False

        if self._keep_history:
            self._history.append(event)
        return True

    def recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        return list(reversed(self._history))[:limit]

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        """Every recorded event of one user action, in order."""
        return [e for e in self._history if e.correlation_id == correlation_id]


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action and pass it to every event
    the action produces.
    """
    return uuid4()
