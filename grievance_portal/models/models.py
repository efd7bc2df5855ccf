"""SQLAlchemy ORM Models for the Grievance Portal.

History events and attachments live in their own tables keyed by the
grievance id, so appending to a case timeline is a single INSERT.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"


class GrievanceCategory(str, PyEnum):
    ACADEMIC = "Academic"
    ADMINISTRATIVE = "Administrative"
    HARASSMENT = "Harassment"
    INFRASTRUCTURE = "Infrastructure"
    OTHER = "Other"


class GrievanceStatus(str, PyEnum):
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_closed(self) -> bool:
        return self in CLOSED_STATUSES


CLOSED_STATUSES = frozenset({GrievanceStatus.RESOLVED, GrievanceStatus.REJECTED})
OPEN_STATUSES = (
    GrievanceStatus.SUBMITTED,
    GrievanceStatus.IN_REVIEW,
    GrievanceStatus.IN_PROGRESS,
)


class HistoryEventType(str, PyEnum):
    STATUS = "status"
    COMMENT = "comment"
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"
    FEEDBACK = "feedback"


class EmailStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # No address on file or SMTP not configured


ANONYMOUS_ACTOR = "anonymous"

# Stored as JSONB on PostgreSQL; SQL NULL (not JSON null) when unset
FeedbackJSON = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# Shared by grievances.status and grievance_history.status
status_enum = Enum(GrievanceStatus, name="grievance_status", values_callable=_enum_values)


# =============================================================================
# USERS
# =============================================================================


class User(Base, UUIDMixin):
    """Portal user profile, resolved from the session credential."""

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        default=UserRole.STUDENT,
        nullable=False,
        index=True,
    )
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auth_provider: Mapped[str] = mapped_column(String(50), default="legacy", nullable=False)
    auth_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("auth_provider", "auth_provider_id", name="uq_users_auth_provider_identity"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User {self.id} role={self.role.value}>"


# =============================================================================
# GRIEVANCES
# =============================================================================


class CaseCounter(Base):
    """Per-year sequence backing human-readable case numbers."""

    __tablename__ = "case_counters"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Grievance(Base, UUIDMixin, TimestampMixin):
    """A grievance case."""

    __tablename__ = "grievances"

    case_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    category: Mapped[GrievanceCategory] = mapped_column(
        Enum(GrievanceCategory, name="grievance_category", values_callable=_enum_values),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    creator_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tracking_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[GrievanceStatus] = mapped_column(
        status_enum,
        default=GrievanceStatus.SUBMITTED,
        nullable=False,
        index=True,
    )
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    resolution_feedback: Mapped[dict | None] = mapped_column(FeedbackJSON, nullable=True)

    history: Mapped[list["GrievanceHistory"]] = relationship(
        back_populates="grievance",
        order_by="GrievanceHistory.sequence",
        cascade="all, delete-orphan",
        lazy="raise",
    )
    attachments: Mapped[list["GrievanceAttachment"]] = relationship(
        back_populates="grievance",
        order_by="GrievanceAttachment.position",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint("escalation_level >= 0", name="escalation_non_negative"),
        Index("ix_grievances_created_at", "created_at"),
    )

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def __repr__(self) -> str:
        return f"<Grievance {self.case_number} status={self.status.value}>"


class GrievanceHistory(Base):
    """One immutable event on a case timeline."""

    __tablename__ = "grievance_history"

    # Insertion order, used to break ties between equal timestamps
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    grievance_id: Mapped[UUID] = mapped_column(
        ForeignKey("grievances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[HistoryEventType] = mapped_column(
        Enum(HistoryEventType, name="history_event_type", values_callable=_enum_values),
        nullable=False,
    )
    status: Mapped[GrievanceStatus | None] = mapped_column(
        status_enum,
        nullable=True,
    )
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    grievance: Mapped["Grievance"] = relationship(back_populates="history")

    __table_args__ = (
        CheckConstraint(
            "(type = 'status') = (status IS NOT NULL)",
            name="status_iff_status_event",
        ),
    )


class GrievanceAttachment(Base, UUIDMixin):
    """File submitted with a grievance. Fixed at creation."""

    __tablename__ = "grievance_attachments"

    grievance_id: Mapped[UUID] = mapped_column(
        ForeignKey("grievances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, deferred=True)

    grievance: Mapped["Grievance"] = relationship(back_populates="attachments")


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin):
    """In-app notification plus its email outbox state."""

    __tablename__ = "notifications"

    grievance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("grievances.id", ondelete="SET NULL"), nullable=True
    )
    recipient_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    email_status: Mapped[EmailStatus] = mapped_column(
        Enum(EmailStatus, name="email_status", values_callable=_enum_values),
        default=EmailStatus.PENDING,
        nullable=False,
        index=True,
    )
    email_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    emailed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    recipient: Mapped["User"] = relationship(lazy="raise")
