"""
Escalation Engine SQLAlchemy Models.

Uses compatibility types for SQLite (dev) + PostgreSQL (prod).
Timestamps are stored as naive UTC; calendar periods are stored as the
local date of the escalation timezone.

Ownership:
- subjects, units, obligations, fulfillment_records, proposals:
  written by other workflows, read-only here
- alert_records: written only by the escalation scheduler
- notifications, feed_posts: written by channels / feed publisher
- config_settings, notification_templates: admin-managed key/value rows
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from escalation_engine.db.compat import GUID, JSONType, TimeOfDay
from escalation_engine.db.engine import Base


def _genuuid():
    return uuid.uuid4()


def utcnow() -> datetime:
    """Naive UTC now, the storage convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ──────────────────────────────────────────────────────────────────────────────
# Identity (owned by the identity collaborator)
# ──────────────────────────────────────────────────────────────────────────────


class Unit(Base):
    """Organizational unit (store, branch, sector)."""

    __tablename__ = "units"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Subject(Base):
    """A user that obligations apply to."""

    __tablename__ = "subjects"
    __table_args__ = (
        Index("ix_subjects_unit_code", "unit_code"),
        Index("ix_subjects_role", "role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[Optional[str]] = mapped_column(String(50))
    unit_code: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    receive_in_app_notifications: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    receive_whatsapp_notifications: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Obligations & fulfillment (owned by authoring / completion workflows)
# ──────────────────────────────────────────────────────────────────────────────


class Obligation(Base):
    """
    A rule a subject must satisfy.

    rule_family "deadline": must be fulfilled every day before deadline_time
    (checklist style). rule_family "persistence": must be fulfilled once
    before continued use (mandatory content style).
    """

    __tablename__ = "obligations"
    __table_args__ = (
        Index("ix_obligations_family_active", "rule_family", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    rule_family: Mapped[str] = mapped_column(String(20), nullable=False)
    audience: Mapped[str] = mapped_column(String(20), nullable=False, default="all")
    audience_values: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    deadline_time: Mapped[Optional[time]] = mapped_column(TimeOfDay())
    channels: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    max_reminders: Mapped[Optional[int]] = mapped_column(Integer)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class FulfillmentRecord(Base):
    """
    Evidence that a subject (or a whole unit) satisfied an obligation.

    subject_id set: personal completion.
    unit_code set, subject_id null: unit-level submission, satisfies every
    member of the unit for the period it was recorded in.
    """

    __tablename__ = "fulfillment_records"
    __table_args__ = (
        Index("ix_fulfillment_obligation_subject", "obligation_id", "subject_id"),
        Index("ix_fulfillment_obligation_unit", "obligation_id", "unit_code"),
        Index("ix_fulfillment_recorded_at", "recorded_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    obligation_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("obligations.id"), nullable=False)
    subject_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("subjects.id"))
    unit_code: Mapped[Optional[str]] = mapped_column(String(50))
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Escalation ledger (owned by this engine)
# ──────────────────────────────────────────────────────────────────────────────


class AlertRecord(Base):
    """
    One delivered escalation for an (obligation, subject) pair in a period.

    The uniqueness constraint is the cross-process idempotency guarantee:
    two concurrent runs can both pass admit(), only one insert wins.
    """

    __tablename__ = "alert_records"
    __table_args__ = (
        UniqueConstraint(
            "obligation_id", "subject_kind", "subject_ref", "period",
            name="uq_alert_records_pair_period",
        ),
        Index("ix_alert_records_pair", "obligation_id", "subject_kind", "subject_ref"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    obligation_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("obligations.id"), nullable=False)
    subject_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    period: Mapped[date] = mapped_column(Date, nullable=False)
    channels: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    delivery_results: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Notification(Base):
    """Durable in-app notification, the guaranteed-visible channel."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_subject_id", "subject_id"),
        Index("ix_notifications_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    subject_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("subjects.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="alert")
    reference_id: Mapped[Optional[str]] = mapped_column(String(128))
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Quorum resolution
# ──────────────────────────────────────────────────────────────────────────────


class Proposal(Base):
    """A time-boxed proposal under community vote."""

    __tablename__ = "proposals"
    __table_args__ = (
        Index("ix_proposals_status_vote_end", "status", "vote_end"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="voting")
    vote_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    positive_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    submitted_by: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("subjects.id"), nullable=False)
    media_urls: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    quorum: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class FeedPost(Base):
    """Post on the downstream community feed."""

    __tablename__ = "feed_posts"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(128))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    media_url: Mapped[Optional[str]] = mapped_column(String(1000))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Admin-managed configuration
# ──────────────────────────────────────────────────────────────────────────────


class ConfigSetting(Base):
    """Key/value runtime setting. Values are loosely typed JSON."""

    __tablename__ = "config_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONType(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class NotificationTemplate(Base):
    """Admin-editable message template with {{variable}} placeholders."""

    __tablename__ = "notification_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
