"""
Escalation trigger endpoints, called by cron invokers.

POST /api/v1/escalation/deadline-compliance  — unit-level checklist alerts
POST /api/v1/escalation/mandatory-reminders  — mandatory content reminders
POST /api/v1/escalation/quorum-resolution    — close expired votes
GET  /api/v1/escalation/gateway/status       — messaging gateway probe

No request body. Per-subject delivery failures are part of the 200
summary; only a configuration problem (503) or a crash (500) is non-2xx.
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from escalation_engine.api.deps import (
    get_escalation_scheduler,
    get_gateway,
    verify_trigger_key,
)
from escalation_engine.escalation.scheduler import EscalationScheduler
from escalation_engine.escalation.schemas import QuorumSummary, RunSummary
from escalation_engine.exceptions import ConfigurationError
from escalation_engine.services.whatsapp_gateway import GatewayStatus, WhatsAppGateway

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/escalation",
    tags=["escalation"],
    dependencies=[Depends(verify_trigger_key)],
)


def _unavailable(e: ConfigurationError) -> HTTPException:
    logger.error("escalation_configuration_error", error=str(e))
    return HTTPException(status_code=503, detail=f"Escalation configuration unavailable: {e}")


@router.post("/deadline-compliance", response_model=RunSummary)
async def trigger_deadline_compliance(
    as_of: Optional[datetime] = Query(None, description="Evaluate as of this instant (default: now)"),
    escalation: EscalationScheduler = Depends(get_escalation_scheduler),
):
    """Alert units that missed today's checklist deadline."""
    try:
        return await escalation.run_deadline_compliance(as_of)
    except ConfigurationError as e:
        raise _unavailable(e)


@router.post("/mandatory-reminders", response_model=RunSummary)
async def trigger_mandatory_reminders(
    as_of: Optional[datetime] = Query(None),
    escalation: EscalationScheduler = Depends(get_escalation_scheduler),
):
    """Remind members of mandatory content they have not completed."""
    try:
        return await escalation.run_mandatory_reminders(as_of)
    except ConfigurationError as e:
        raise _unavailable(e)


@router.post("/quorum-resolution", response_model=QuorumSummary)
async def trigger_quorum_resolution(
    as_of: Optional[datetime] = Query(None),
    escalation: EscalationScheduler = Depends(get_escalation_scheduler),
):
    try:
        return await escalation.run_quorum_resolution(as_of)
    except ConfigurationError as e:
        raise _unavailable(e)


@router.get("/gateway/status", response_model=GatewayStatus)
async def gateway_status(gateway: WhatsAppGateway = Depends(get_gateway)):
    return await gateway.status()
