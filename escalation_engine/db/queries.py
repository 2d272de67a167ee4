"""
Database query functions for the escalation engine.

Plain async functions over an explicit AsyncSession. Used by the
scheduler (direct DB access) and by the compliance gate (request path).
All datetime arguments are naive UTC, matching the storage convention.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.db.models import (
    AlertRecord,
    ConfigSetting,
    FulfillmentRecord,
    NotificationTemplate,
    Obligation,
    Proposal,
    Subject,
    Unit,
)


# ── Configuration ────────────────────────────────────────────────────────


async def get_config_values(
    session: AsyncSession, keys: Iterable[str]
) -> dict[str, Any]:
    """Raw key → JSON value for the requested keys that exist."""
    result = await session.execute(
        select(ConfigSetting.key, ConfigSetting.value).where(ConfigSetting.key.in_(list(keys)))
    )
    return {key: value for key, value in result.all()}


async def get_active_template(
    session: AsyncSession, template_id: str
) -> Optional[NotificationTemplate]:
    result = await session.execute(
        select(NotificationTemplate).where(
            NotificationTemplate.id == template_id,
            NotificationTemplate.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


# ── Obligations ──────────────────────────────────────────────────────────


async def get_active_obligations(
    session: AsyncSession, rule_family: str
) -> Sequence[Obligation]:
    """Active obligations of a family in stable order (sort_order, created_at, id)."""
    result = await session.execute(
        select(Obligation)
        .where(Obligation.rule_family == rule_family, Obligation.is_active.is_(True))
        .order_by(Obligation.sort_order, Obligation.created_at, Obligation.id)
    )
    return result.scalars().all()


# ── Subjects & units ─────────────────────────────────────────────────────


async def get_active_subjects(session: AsyncSession) -> Sequence[Subject]:
    result = await session.execute(
        select(Subject).where(Subject.is_active.is_(True)).order_by(Subject.full_name, Subject.id)
    )
    return result.scalars().all()


async def get_subject(session: AsyncSession, subject_id: uuid.UUID) -> Optional[Subject]:
    result = await session.execute(select(Subject).where(Subject.id == subject_id))
    return result.scalar_one_or_none()


async def get_subjects_by_roles(
    session: AsyncSession, roles: Iterable[str]
) -> Sequence[Subject]:
    roles = list(roles)
    if not roles:
        return []
    result = await session.execute(
        select(Subject)
        .where(Subject.is_active.is_(True), Subject.role.in_(roles))
        .order_by(Subject.full_name, Subject.id)
    )
    return result.scalars().all()


async def get_unit_names(session: AsyncSession, codes: Iterable[str]) -> dict[str, str]:
    codes = list(codes)
    if not codes:
        return {}
    result = await session.execute(select(Unit.code, Unit.name).where(Unit.code.in_(codes)))
    return {code: name for code, name in result.all()}


# ── Fulfillment ──────────────────────────────────────────────────────────


def _fulfillment_filters(
    obligation_id: uuid.UUID,
    start: Optional[datetime],
    end: Optional[datetime],
) -> list:
    filters = [
        FulfillmentRecord.obligation_id == obligation_id,
        FulfillmentRecord.success.is_(True),
    ]
    if start is not None:
        filters.append(FulfillmentRecord.recorded_at >= start)
    if end is not None:
        filters.append(FulfillmentRecord.recorded_at < end)
    return filters


async def get_fulfilled_subject_ids(
    session: AsyncSession,
    obligation_id: uuid.UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> set[uuid.UUID]:
    """Subjects with a personal success record, optionally within [start, end)."""
    result = await session.execute(
        select(FulfillmentRecord.subject_id)
        .where(and_(*_fulfillment_filters(obligation_id, start, end)))
        .where(FulfillmentRecord.subject_id.is_not(None))
        .distinct()
    )
    return set(result.scalars().all())


async def get_fulfilled_unit_codes(
    session: AsyncSession,
    obligation_id: uuid.UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> set[str]:
    """Units with a unit-level success record, optionally within [start, end)."""
    result = await session.execute(
        select(FulfillmentRecord.unit_code)
        .where(and_(*_fulfillment_filters(obligation_id, start, end)))
        .where(FulfillmentRecord.subject_id.is_(None))
        .where(FulfillmentRecord.unit_code.is_not(None))
        .distinct()
    )
    return set(result.scalars().all())


async def get_fulfilled_obligation_ids(
    session: AsyncSession,
    subject_id: uuid.UUID,
    unit_code: Optional[str] = None,
) -> set[uuid.UUID]:
    """Obligations the subject (or the subject's unit) has satisfied at any time."""
    owner = FulfillmentRecord.subject_id == subject_id
    if unit_code:
        owner = owner | and_(
            FulfillmentRecord.subject_id.is_(None),
            FulfillmentRecord.unit_code == unit_code,
        )
    result = await session.execute(
        select(FulfillmentRecord.obligation_id)
        .where(FulfillmentRecord.success.is_(True))
        .where(owner)
        .distinct()
    )
    return set(result.scalars().all())


# ── Alert ledger ─────────────────────────────────────────────────────────


async def alert_exists_for_period(
    session: AsyncSession,
    obligation_id: uuid.UUID,
    subject_kind: str,
    subject_ref: str,
    period: date,
) -> bool:
    result = await session.execute(
        select(AlertRecord.id).where(
            AlertRecord.obligation_id == obligation_id,
            AlertRecord.subject_kind == subject_kind,
            AlertRecord.subject_ref == subject_ref,
            AlertRecord.period == period,
        ).limit(1)
    )
    return result.first() is not None


async def count_delivered_alerts(
    session: AsyncSession,
    obligation_id: uuid.UUID,
    subject_kind: str,
    subject_ref: str,
) -> int:
    """Historical delivered alert count for one pair, across all periods."""
    result = await session.execute(
        select(func.count(AlertRecord.id)).where(
            AlertRecord.obligation_id == obligation_id,
            AlertRecord.subject_kind == subject_kind,
            AlertRecord.subject_ref == subject_ref,
            AlertRecord.delivered.is_(True),
        )
    )
    return int(result.scalar() or 0)


# ── Proposals ────────────────────────────────────────────────────────────


async def get_expired_proposals(
    session: AsyncSession, as_of: datetime
) -> Sequence[Proposal]:
    """Proposals still under vote whose window closed before as_of."""
    result = await session.execute(
        select(Proposal)
        .where(Proposal.status == "voting", Proposal.vote_end < as_of)
        .order_by(Proposal.vote_end, Proposal.id)
    )
    return result.scalars().all()


async def transition_proposal(
    session: AsyncSession,
    proposal_id: uuid.UUID,
    status: str,
    quorum: Decimal,
    resolved_at: datetime,
) -> bool:
    """
    Move a proposal out of 'voting'. Conditional on the current status, so
    a concurrent or repeated run cannot transition it twice.

    Returns True if this call performed the transition.
    """
    result = await session.execute(
        update(Proposal)
        .where(Proposal.id == proposal_id, Proposal.status == "voting")
        .values(status=status, quorum=quorum, resolved_at=resolved_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
