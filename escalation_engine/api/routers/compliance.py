"""
Compliance gate endpoint, called by the frontend on navigation.

GET /api/v1/compliance/gate?path=/feed — {"state": "blocked", "redirect_to": ...}
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.api.deps import get_compliance_gate, get_db, get_subject_id
from escalation_engine.escalation.gate import ComplianceGate
from escalation_engine.escalation.schemas import GateDecision

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


@router.get("/gate", response_model=GateDecision)
async def check_gate(
    path: str = Query(..., min_length=1, description="Path the subject is navigating to"),
    db: AsyncSession = Depends(get_db),
    subject_id: uuid.UUID = Depends(get_subject_id),
    gate: ComplianceGate = Depends(get_compliance_gate),
):
    return await gate.check(db, subject_id, path)
