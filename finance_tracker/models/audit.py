"""
Audit Models for Finance Tracker

Every write against the document store, successful or not, is recorded.
This provides:
1. Traceability of what changed and which cached views were made stale
2. Debugging information when a write or a read fails
3. The user-facing notification for every mutation outcome

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORY_DELETE_REFUSED = "category_delete_refused"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    MUTATION_FAILED = "mutation_failed"

    # Cache
    QUERIES_INVALIDATED = "queries_invalidated"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every mutation creates at least one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="'transaction' or 'category'"
    )
    entity_id: Optional[str] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by every event of one user action"
    )

    description: str = Field(
        ...,
        max_length=500,
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


class Notification(BaseModel):
    """
    A user-facing message about the outcome of an action.

    The presentation layer renders these as toasts.
    """

    title: str
    description: str
    variant: str = Field(
        default="default",
        pattern="^(default|destructive)$",
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_error(self) -> bool:
        return self.variant == "destructive"


_ENTITY_EVENTS = {
    ("transaction", "create"): AuditEventType.TRANSACTION_CREATED,
    ("transaction", "update"): AuditEventType.TRANSACTION_UPDATED,
    ("transaction", "delete"): AuditEventType.TRANSACTION_DELETED,
    ("category", "create"): AuditEventType.CATEGORY_CREATED,
    ("category", "update"): AuditEventType.CATEGORY_UPDATED,
    ("category", "delete"): AuditEventType.CATEGORY_DELETED,
}


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.mutation_succeeded("transaction", "create", ...)
        event = AuditEventBuilder.mutation_failed("category", "delete", ...)
    """

    @staticmethod
    def mutation_succeeded(
        entity_type: str,
        action: str,
        user_id: str,
        entity_id: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=_ENTITY_EVENTS[(entity_type, action)],
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {action}d: {entity_id}",
            details=details or {},
        )

    @staticmethod
    def mutation_failed(
        entity_type: str,
        action: str,
        user_id: Optional[str],
        error: BaseException,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Failed to {action} {entity_type}",
            details={"action": action},
            error_type=type(error).__name__,
            error_message=str(error),
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        action: str,
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"Rejected {entity_type} {action}: invalid input",
            details={"action": action, "issues": issues},
        )

    @staticmethod
    def category_delete_refused(
        user_id: str,
        category_id: str,
        reference_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETE_REFUSED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description="Category still referenced by transactions",
            details={"reference_count": reference_count},
        )

    @staticmethod
    def queries_invalidated(
        user_id: str,
        keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERIES_INVALIDATED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Invalidated {len(keys)} query keys",
            details={"keys": keys},
        )
