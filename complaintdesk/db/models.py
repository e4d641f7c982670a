from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from complaintdesk.db.base import Base, TimestampMixin, utcnow
from complaintdesk.db.enums import ActionStatus, ComplaintCategory, ComplaintStatus, UserRole

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, "sqlite")

_LIVE_ACTION_PREDICATE = "status IN ('in_progress', 'under_review')"


class User(Base, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'worker', 'admin', 'super_admin')",
            name="role_values",
        ),
        Index("ix_users_role", "role"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, server_default=text("''"))
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        String(32),
        nullable=False,
        default=UserRole.USER,
        server_default=text("'user'"),
    )


class Complaint(Base, TimestampMixin):
    __tablename__ = "complaints"
    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'in_progress', 'under_review', 'resolved', 'closed')",
            name="status_values",
        ),
        CheckConstraint(
            "category IN ('biodegradable', 'non-biodegradable', 'other')",
            name="category_values",
        ),
        CheckConstraint(
            "(status = 'resolved' AND resolved_at IS NOT NULL AND resolved_by IS NOT NULL) "
            "OR (status <> 'resolved' AND resolved_at IS NULL AND resolved_by IS NULL)",
            name="resolution_consistency",
        ),
        CheckConstraint("resolution_count >= 0", name="resolution_count_non_negative"),
        Index("ix_complaints_reporter_created_at", "reporter_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reporter_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[ComplaintCategory] = mapped_column(String(30), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    evidence_image_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ComplaintStatus] = mapped_column(
        String(32),
        nullable=False,
        default=ComplaintStatus.OPEN,
        server_default=text("'open'"),
        index=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    resolution_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )


class Action(Base, TimestampMixin):
    __tablename__ = "actions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'under_review', 'resolved', 'closed')",
            name="status_values",
        ),
        Index(
            "uq_actions_live_per_complaint",
            "complaint_id",
            unique=True,
            postgresql_where=text(_LIVE_ACTION_PREDICATE),
            sqlite_where=text(_LIVE_ACTION_PREDICATE),
        ),
        Index("ix_actions_worker_created_at", "assigned_worker_id", "created_at"),
        Index("ix_actions_complaint_created_at", "complaint_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    complaint_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False
    )
    assigned_worker_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[ActionStatus] = mapped_column(
        String(32),
        nullable=False,
        default=ActionStatus.IN_PROGRESS,
        server_default=text("'in_progress'"),
    )
    evidence_image_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class RewardAccount(Base, TimestampMixin):
    __tablename__ = "reward_accounts"
    __table_args__ = (CheckConstraint("points >= 0", name="points_non_negative"),)

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class RewardCredit(Base):
    __tablename__ = "reward_credits"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        UniqueConstraint("dedupe_key", name="uq_reward_credits_dedupe_key"),
        Index("ix_reward_credits_user_created_at", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    complaint_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("complaints.id", ondelete="SET NULL"), nullable=True
    )
    action_id: Mapped[int | None] = mapped_column(
        ForeignKey("actions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "read"),
        Index("ix_notifications_recipient_created_at", "recipient_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    complaint_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("complaints.id", ondelete="CASCADE"), nullable=True
    )
    action_id: Mapped[int | None] = mapped_column(
        ForeignKey("actions.id", ondelete="CASCADE"), nullable=True
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
