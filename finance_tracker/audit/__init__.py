"""Audit logging and notification package."""

from finance_tracker.audit.logger import AuditLogger, configure_logging, create_correlation_id
from finance_tracker.audit.notifier import Notifier

__all__ = ["AuditLogger", "Notifier", "configure_logging", "create_correlation_id"]
