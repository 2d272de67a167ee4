"""
FastAPI dependencies for API routes.

Re-exports auth dependencies and exposes the long-lived services that
the lifespan stores on app.state.
"""

from fastapi import Request

from escalation_engine.auth.dependencies import get_db, get_subject_id, verify_trigger_key
from escalation_engine.escalation.gate import ComplianceGate
from escalation_engine.escalation.scheduler import EscalationScheduler
from escalation_engine.services.whatsapp_gateway import WhatsAppGateway

__all__ = [
    "get_db",
    "get_subject_id",
    "verify_trigger_key",
    "get_escalation_scheduler",
    "get_gateway",
    "get_compliance_gate",
]


def get_escalation_scheduler(request: Request) -> EscalationScheduler:
    return request.app.state.escalation


def get_gateway(request: Request) -> WhatsAppGateway:
    return request.app.state.gateway


def get_compliance_gate(request: Request) -> ComplianceGate:
    return request.app.state.compliance_gate
