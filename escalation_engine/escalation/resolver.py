"""
Target Resolver — which (obligation, subject-or-unit) pairs are outstanding.

Rule families:
1. Deadline: outstanding once the local time-of-day reaches the
   obligation's deadline_time. Resolution is unit-level: a unit is
   outstanding when an applicable member has no success record today and
   no unit-level submission exists for today.
2. Persistence: outstanding per member while the subject has never
   fulfilled the obligation. No time window.

Audience errors exclude the subject only; the rest of the run continues.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.db import queries
from escalation_engine.db.models import Obligation, Proposal, Subject
from escalation_engine.escalation.periods import (
    deadline_passed,
    period_bounds,
    period_of,
    to_utc_naive,
)
from escalation_engine.escalation.schemas import (
    AudienceScope,
    OutstandingTarget,
    RuleFamily,
    TargetKind,
)
from escalation_engine.escalation.settings_store import EscalationConfig
from escalation_engine.exceptions import ApplicabilityError

logger = structlog.get_logger(__name__)


def is_applicable(obligation: Obligation, subject: Subject) -> bool:
    """
    Audience predicate.

    Raises:
        ApplicabilityError: the subject lacks the attribute the audience
            filters on, or the audience scope is unknown.
    """
    values = set(obligation.audience_values or [])
    scope = obligation.audience or AudienceScope.ALL

    if scope == AudienceScope.ALL:
        return True
    if scope == AudienceScope.ROLES:
        if not subject.role:
            raise ApplicabilityError(obligation.id, subject.id, "subject has no role")
        return subject.role in values
    if scope == AudienceScope.UNITS:
        if not subject.unit_code:
            raise ApplicabilityError(obligation.id, subject.id, "subject has no unit")
        return subject.unit_code in values
    raise ApplicabilityError(obligation.id, subject.id, f"unknown audience scope {scope!r}")


class TargetResolver:
    """Computes outstanding targets from obligations and fulfillment records."""

    async def resolve(
        self,
        session: AsyncSession,
        obligations: Iterable[Obligation],
        as_of: datetime,
        config: EscalationConfig,
    ) -> list[OutstandingTarget]:
        obligations = list(obligations)
        if not obligations:
            return []

        subjects = await queries.get_active_subjects(session)
        targets: list[OutstandingTarget] = []
        for obligation in obligations:
            if obligation.rule_family == RuleFamily.DEADLINE:
                targets.extend(
                    await self.resolve_deadline(session, obligation, subjects, as_of, config)
                )
            elif obligation.rule_family == RuleFamily.PERSISTENCE:
                targets.extend(
                    await self.resolve_persistence(session, obligation, subjects)
                )
            else:
                logger.warning(
                    "unknown_rule_family",
                    obligation_id=str(obligation.id),
                    rule_family=obligation.rule_family,
                )

        logger.info(
            "targets_resolved",
            obligations=len(obligations),
            subjects=len(subjects),
            outstanding=len(targets),
        )
        return targets

    def applicable_subjects(
        self, obligation: Obligation, subjects: Sequence[Subject]
    ) -> list[Subject]:
        applicable = []
        for subject in subjects:
            try:
                if is_applicable(obligation, subject):
                    applicable.append(subject)
            except ApplicabilityError as e:
                logger.warning(
                    "subject_excluded_from_resolution",
                    obligation_id=str(e.obligation_id),
                    subject_id=str(e.subject_id),
                    reason=e.reason,
                )
        return applicable

    async def resolve_deadline(
        self,
        session: AsyncSession,
        obligation: Obligation,
        subjects: Sequence[Subject],
        as_of: datetime,
        config: EscalationConfig,
    ) -> list[OutstandingTarget]:
        tz = config.tz
        if not deadline_passed(as_of, obligation.deadline_time, tz):
            return []

        start, end = period_bounds(period_of(as_of, tz), tz)
        fulfilled_subjects = await queries.get_fulfilled_subject_ids(
            session, obligation.id, start, end
        )
        fulfilled_units = await queries.get_fulfilled_unit_codes(
            session, obligation.id, start, end
        )

        members: dict[str, list[Subject]] = defaultdict(list)
        for subject in self.applicable_subjects(obligation, subjects):
            if not subject.unit_code:
                logger.warning(
                    "subject_excluded_from_resolution",
                    obligation_id=str(obligation.id),
                    subject_id=str(subject.id),
                    reason="subject has no unit",
                )
                continue
            members[subject.unit_code].append(subject)

        unit_names = await queries.get_unit_names(session, members.keys())
        targets = []
        for unit_code in sorted(members):
            if unit_code in fulfilled_units:
                continue
            missing = [s for s in members[unit_code] if s.id not in fulfilled_subjects]
            if not missing:
                continue
            targets.append(
                OutstandingTarget(
                    obligation=obligation,
                    kind=TargetKind.UNIT,
                    ref=unit_code,
                    display_name=unit_names.get(unit_code, unit_code),
                    recipients=list(members[unit_code]),
                    missing=missing,
                )
            )
        return targets

    async def resolve_persistence(
        self,
        session: AsyncSession,
        obligation: Obligation,
        subjects: Sequence[Subject],
    ) -> list[OutstandingTarget]:
        fulfilled_subjects = await queries.get_fulfilled_subject_ids(session, obligation.id)
        fulfilled_units = await queries.get_fulfilled_unit_codes(session, obligation.id)

        targets = []
        for subject in self.applicable_subjects(obligation, subjects):
            if subject.id in fulfilled_subjects:
                continue
            if subject.unit_code and subject.unit_code in fulfilled_units:
                continue
            targets.append(
                OutstandingTarget(
                    obligation=obligation,
                    kind=TargetKind.SUBJECT,
                    ref=str(subject.id),
                    display_name=subject.full_name,
                    recipients=[subject],
                    missing=[subject],
                )
            )
        return targets

    async def resolve_expired_proposals(
        self, session: AsyncSession, as_of: datetime
    ) -> Sequence[Proposal]:
        return await queries.get_expired_proposals(session, to_utc_naive(as_of))


def unmet_obligation(
    obligations: Sequence[Obligation],
    subject: Subject,
    fulfilled: set[uuid.UUID],
) -> Optional[Obligation]:
    """First applicable obligation (in the given order) the subject has not met."""
    for obligation in obligations:
        try:
            if not is_applicable(obligation, subject):
                continue
        except ApplicabilityError as e:
            logger.warning(
                "subject_excluded_from_resolution",
                obligation_id=str(e.obligation_id),
                subject_id=str(e.subject_id),
                reason=e.reason,
            )
            continue
        if obligation.id not in fulfilled:
            return obligation
    return None
