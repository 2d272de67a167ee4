"""
Alert Ledger — admission and recording of escalations.

Strategies:
1. Period dedup: at most one alert per (obligation, target) per local day
2. Reminder cap: at most max_reminders delivered alerts per pair, ever
3. Conflict tolerance: a concurrent writer that already inserted the
   pair/period row wins, and this run treats it as success

State lives only in the alert_records table. Each record() commits in its
own session so the row is visible to every later admit(), in any process.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalation_engine.db import queries
from escalation_engine.db.models import AlertRecord, Obligation, utcnow
from escalation_engine.escalation.periods import period_of
from escalation_engine.escalation.schemas import (
    AdmitReason,
    Channel,
    OutstandingTarget,
    RecordOutcome,
)
from escalation_engine.escalation.settings_store import EscalationConfig

logger = structlog.get_logger(__name__)


def effective_max_reminders(obligation: Obligation, config: EscalationConfig) -> int:
    if obligation.max_reminders is not None and obligation.max_reminders > 0:
        return obligation.max_reminders
    return config.max_reminders


class AlertLedger:
    """Decides whether a pair may be alerted and records delivered alerts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: EscalationConfig,
    ):
        self._session_factory = session_factory
        self._config = config

    async def evaluate(
        self, obligation: Obligation, target: OutstandingTarget, as_of: datetime
    ) -> AdmitReason:
        """
        Check a pair against the ledger.

        Returns:
            ADMITTED, ALREADY_ALERTED (same local day) or MAX_REMINDERS.
        """
        period = period_of(as_of, self._config.tz)
        async with self._session_factory() as session:
            if await queries.alert_exists_for_period(
                session, obligation.id, target.kind, target.ref, period
            ):
                return AdmitReason.ALREADY_ALERTED

            sent = await queries.count_delivered_alerts(
                session, obligation.id, target.kind, target.ref
            )
        if sent >= effective_max_reminders(obligation, self._config):
            return AdmitReason.MAX_REMINDERS
        return AdmitReason.ADMITTED

    async def admit(
        self, obligation: Obligation, target: OutstandingTarget, as_of: datetime
    ) -> bool:
        return await self.evaluate(obligation, target, as_of) == AdmitReason.ADMITTED

    async def record(
        self,
        obligation: Obligation,
        target: OutstandingTarget,
        channels_used: list[Channel],
        results: dict[str, dict[str, int]],
        as_of: datetime,
        failures: Optional[list[dict]] = None,
    ) -> RecordOutcome:
        """
        Persist one delivered alert for the pair in the current period.

        Callers only record after at least one channel delivered.
        """
        period = period_of(as_of, self._config.tz)
        row = AlertRecord(
            obligation_id=obligation.id,
            subject_kind=str(target.kind),
            subject_ref=target.ref,
            period=period,
            channels=[str(c) for c in channels_used],
            delivery_results={"channels": results, "failures": failures or []},
            delivered=True,
            sent_at=utcnow(),
        )

        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "alert_record_conflict",
                    obligation_id=str(obligation.id),
                    target_kind=str(target.kind),
                    target_ref=target.ref,
                    period=period.isoformat(),
                )
                return RecordOutcome.CONFLICT

        logger.info(
            "alert_recorded",
            obligation_id=str(obligation.id),
            target_kind=str(target.kind),
            target_ref=target.ref,
            period=period.isoformat(),
            channels=row.channels,
        )
        return RecordOutcome.RECORDED
