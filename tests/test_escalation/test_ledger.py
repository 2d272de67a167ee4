"""
Tests for the Alert Ledger.

Covers:
- First alert is admitted
- Same period is suppressed after record
- Next period is admitted again until the reminder cap
- Per-obligation cap overrides the configured cap
- Concurrent writer conflict is reported, not raised
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from escalation_engine.db.models import AlertRecord
from escalation_engine.escalation.ledger import AlertLedger, effective_max_reminders
from escalation_engine.escalation.periods import period_of
from escalation_engine.escalation.schemas import (
    AdmitReason,
    Channel,
    OutstandingTarget,
    RecordOutcome,
    TargetKind,
)
from escalation_engine.escalation.settings_store import EscalationConfig


@pytest.fixture
def ledger(session_factory, config):
    return AlertLedger(session_factory, config)


async def _unit_target(seed, **obligation_kwargs):
    obligation = await seed.obligation(**obligation_kwargs)
    return obligation, OutstandingTarget(
        obligation=obligation, kind=TargetKind.UNIT, ref="U001", display_name="Loja Centro"
    )


async def _count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(AlertRecord.id)))).scalar()


@pytest.mark.asyncio
async def test_first_alert_admitted(ledger, seed, as_of):
    obligation, target = await _unit_target(seed)
    assert await ledger.admit(obligation, target, as_of) is True


@pytest.mark.asyncio
async def test_same_period_suppressed(ledger, seed, as_of):
    obligation, target = await _unit_target(seed)

    outcome = await ledger.record(obligation, target, [Channel.IN_APP], {}, as_of)
    assert outcome == RecordOutcome.RECORDED

    later = as_of + timedelta(hours=2)  # 22:00 local, same day
    assert await ledger.evaluate(obligation, target, later) == AdmitReason.ALREADY_ALERTED


@pytest.mark.asyncio
async def test_cap_reached_across_periods(session_factory, seed, as_of):
    ledger = AlertLedger(session_factory, EscalationConfig(timezone="America/Sao_Paulo", max_reminders=3))
    obligation, target = await _unit_target(seed)

    for day in range(10):
        when = as_of + timedelta(days=day)
        if await ledger.admit(obligation, target, when):
            await ledger.record(obligation, target, [Channel.IN_APP], {}, when)

    assert await _count(session_factory) == 3
    assert await ledger.evaluate(obligation, target, as_of + timedelta(days=11)) == AdmitReason.MAX_REMINDERS


@pytest.mark.asyncio
async def test_obligation_cap_overrides_config(ledger, seed, as_of, config):
    obligation, target = await _unit_target(seed, max_reminders=1)
    assert effective_max_reminders(obligation, config) == 1

    await ledger.record(obligation, target, [Channel.IN_APP], {}, as_of)

    tomorrow = as_of + timedelta(days=1)
    assert await ledger.evaluate(obligation, target, tomorrow) == AdmitReason.MAX_REMINDERS


@pytest.mark.asyncio
async def test_conflict_is_success(ledger, seed, session_factory, as_of, tz):
    obligation, target = await _unit_target(seed)

    # Another process inserted the same pair/period between admit and record
    async with session_factory() as session:
        session.add(
            AlertRecord(
                obligation_id=obligation.id,
                subject_kind="unit",
                subject_ref="U001",
                period=period_of(as_of, tz),
                channels=["in_app"],
            )
        )
        await session.commit()

    outcome = await ledger.record(obligation, target, [Channel.IN_APP], {}, as_of)

    assert outcome == RecordOutcome.CONFLICT
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_pairs_are_independent(ledger, seed, as_of):
    obligation, target = await _unit_target(seed)
    other = OutstandingTarget(
        obligation=obligation, kind=TargetKind.UNIT, ref="U002", display_name="Loja Norte"
    )

    await ledger.record(obligation, target, [Channel.IN_APP], {}, as_of)

    assert await ledger.admit(obligation, other, as_of) is True
