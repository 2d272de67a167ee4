"""
Compliance Gate — blocks navigation while a persistence obligation is unmet.

Read-only: never writes alert records and never calls a channel.
Fails open: any error while evaluating returns ALLOWED and is logged once.
"""

import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.config import settings
from escalation_engine.db import queries
from escalation_engine.escalation.resolver import unmet_obligation
from escalation_engine.escalation.schemas import GateDecision, GateState, RuleFamily
from escalation_engine.escalation.settings_store import load_escalation_config

logger = structlog.get_logger(__name__)


def is_exempt(path: str, exempt_prefixes: Iterable[str]) -> bool:
    """Prefix match on path segments ("/auth" matches "/auth/x", not "/authors")."""
    normalized = "/" + path.strip().lstrip("/")
    for prefix in exempt_prefixes:
        prefix = "/" + prefix.strip().strip("/")
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return True
    return False


class ComplianceGate:
    def __init__(
        self,
        exempt_paths: Optional[list[str]] = None,
        fulfillment_path_template: Optional[str] = None,
    ):
        self._exempt_paths = exempt_paths if exempt_paths is not None else settings.compliance_exempt_paths
        self._template = fulfillment_path_template or settings.fulfillment_path_template

    async def check(
        self, session: AsyncSession, subject_id: uuid.UUID, path: str
    ) -> GateDecision:
        if is_exempt(path, self._exempt_paths):
            return GateDecision(state=GateState.ALLOWED, reason="exempt_path")

        try:
            return await self._evaluate(session, subject_id)
        except Exception as e:
            logger.error(
                "compliance_gate_failed_open",
                subject_id=str(subject_id),
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            return GateDecision(state=GateState.ALLOWED, reason="evaluation_error")

    async def _evaluate(self, session: AsyncSession, subject_id: uuid.UUID) -> GateDecision:
        config = await load_escalation_config(session)
        if not config.block_access:
            return GateDecision(state=GateState.ALLOWED, reason="blocking_disabled")

        subject = await queries.get_subject(session, subject_id)
        if subject is None or not subject.is_active:
            return GateDecision(state=GateState.ALLOWED, reason="unknown_subject")

        obligations = await queries.get_active_obligations(session, RuleFamily.PERSISTENCE)
        if not obligations:
            return GateDecision(state=GateState.ALLOWED, reason="no_obligations")

        fulfilled = await queries.get_fulfilled_obligation_ids(
            session, subject.id, subject.unit_code
        )
        pending = unmet_obligation(obligations, subject, fulfilled)
        if pending is None:
            return GateDecision(state=GateState.ALLOWED, reason="all_obligations_met")

        return GateDecision(
            state=GateState.BLOCKED,
            reason="unmet_obligation",
            redirect_to=self._template.format(obligation_id=pending.id),
            obligation_id=pending.id,
        )
