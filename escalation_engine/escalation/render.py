"""
Message rendering.

Built-in Portuguese templates (the product locale) with {{variable}}
placeholders. An active row in notification_templates with the same id
overrides the title and in-app body.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.db import queries
from escalation_engine.db.models import Obligation, Proposal
from escalation_engine.escalation.schemas import OutstandingTarget, RenderedMessage

logger = structlog.get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class MessageTemplate:
    title: str
    body: str
    whatsapp: Optional[str] = None
    type: str = "alert"


DEADLINE_MISSED = "deadline_missed"
DEADLINE_ESCALATION = "deadline_escalation"
PERSISTENCE_PENDING = "persistence_pending"
PROPOSAL_APPROVED = "proposal_approved"
PROPOSAL_REJECTED = "proposal_rejected"


BUILTIN_TEMPLATES: dict[str, MessageTemplate] = {
    DEADLINE_MISSED: MessageTemplate(
        title="Checklist Pendente",
        body=(
            'O checklist "{{title}}" ainda não foi enviado pela unidade {{unit_name}}. '
            "Prazo: {{deadline}}h"
        ),
        whatsapp=(
            "🚨 *Atenção!*\n\n"
            "O checklist de *{{title}}* ainda não foi enviado pela unidade *{{unit_name}}*.\n\n"
            "Por favor, realize o preenchimento até as {{deadline}}h para evitar alertas automáticos.\n\n"
            "📍 Código da unidade: {{unit_code}}\n"
            "📅 Data: {{date}}"
        ),
    ),
    DEADLINE_ESCALATION: MessageTemplate(
        title="Checklist Pendente na Unidade {{unit_name}}",
        body=(
            'A unidade {{unit_name}} ({{unit_code}}) não enviou o checklist "{{title}}" '
            "até {{deadline}}h. Pendentes: {{missing_count}} de {{member_count}}."
        ),
    ),
    PERSISTENCE_PENDING: MessageTemplate(
        title="🛑 Conteúdo Obrigatório Pendente",
        body=(
            'Você tem um conteúdo obrigatório pendente: "{{title}}". '
            "Complete-o para continuar usando o sistema."
        ),
        whatsapp=(
            "🛑 *Conteúdo Obrigatório Pendente*\n\n"
            "Olá, {{name}}! Você tem um conteúdo obrigatório pendente: *{{title}}*.\n\n"
            "Complete-o para continuar usando o sistema."
        ),
    ),
    PROPOSAL_APPROVED: MessageTemplate(
        title="Ideia Aprovada",
        body='🎉 Sua ideia "{{title}}" foi aprovada pela comunidade com {{approval_rate}}% de aprovação!',
        whatsapp=(
            "🎉 *Parabéns, {{name}}!*\n\n"
            'Sua ideia *"{{title}}"* foi aprovada pela comunidade com '
            "*{{approval_rate}}% de aprovação*!\n\n"
            "Em breve você receberá atualizações sobre a implementação."
        ),
        type="status",
    ),
    PROPOSAL_REJECTED: MessageTemplate(
        title="Ideia Não Aprovada",
        body=(
            'Sua ideia "{{title}}" não atingiu o quórum mínimo '
            "({{approval_rate}}% de {{quorum}}% necessário)."
        ),
        type="status",
    ),
}


def substitute(template: str, variables: dict[str, Any]) -> str:
    """Replace {{name}} placeholders. Unknown placeholders are left as-is."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables or variables[key] is None:
            return match.group(0)
        return str(variables[key])

    return _PLACEHOLDER.sub(_replace, template)


def format_rate(rate: float) -> str:
    return f"{rate:.1f}"


class MessageRenderer:
    """Renders messages from built-in templates and admin overrides."""

    def __init__(self) -> None:
        self._overrides: dict[str, Optional[MessageTemplate]] = {}

    async def _template(self, session: AsyncSession, template_id: str) -> MessageTemplate:
        if template_id not in self._overrides:
            row = await queries.get_active_template(session, template_id)
            self._overrides[template_id] = (
                MessageTemplate(
                    title=row.title,
                    body=row.message_template,
                    type=BUILTIN_TEMPLATES[template_id].type,
                )
                if row is not None
                else None
            )
        return self._overrides[template_id] or BUILTIN_TEMPLATES[template_id]

    async def render(
        self,
        session: AsyncSession,
        template_id: str,
        variables: dict[str, Any],
        reference_id: Optional[str] = None,
    ) -> RenderedMessage:
        template = await self._template(session, template_id)
        # An override replaces the WhatsApp text too (title + body).
        whatsapp = template.whatsapp
        return RenderedMessage(
            title=substitute(template.title, variables),
            body=substitute(template.body, variables),
            type=template.type,
            reference_id=reference_id,
            whatsapp_body=substitute(whatsapp, variables) if whatsapp else None,
        )

    # ── Family helpers ─────────────────────────────────────────────────

    async def deadline_alert(
        self,
        session: AsyncSession,
        target: OutstandingTarget,
        local_now: datetime,
        escalation: bool = False,
    ) -> RenderedMessage:
        obligation = target.obligation
        variables = {
            "title": obligation.title,
            "unit_name": target.display_name,
            "unit_code": target.ref,
            "deadline": _deadline(obligation),
            "date": local_now.strftime("%d/%m/%Y"),
            "missing_count": len(target.missing),
            "member_count": len(target.recipients),
        }
        template_id = DEADLINE_ESCALATION if escalation else DEADLINE_MISSED
        return await self.render(session, template_id, variables, reference_id=str(obligation.id))

    async def persistence_reminder(
        self, session: AsyncSession, target: OutstandingTarget
    ) -> RenderedMessage:
        obligation = target.obligation
        variables = {"title": obligation.title, "name": target.display_name}
        return await self.render(
            session, PERSISTENCE_PENDING, variables, reference_id=str(obligation.id)
        )

    async def proposal_resolved(
        self,
        session: AsyncSession,
        proposal: Proposal,
        approved: bool,
        approval_rate: float,
        quorum: float,
        author_name: str,
    ) -> RenderedMessage:
        variables = {
            "title": proposal.title,
            "code": proposal.code,
            "name": author_name,
            "approval_rate": format_rate(approval_rate),
            "quorum": f"{quorum:g}",
        }
        template_id = PROPOSAL_APPROVED if approved else PROPOSAL_REJECTED
        return await self.render(session, template_id, variables, reference_id=str(proposal.id))


def _deadline(obligation: Obligation) -> str:
    if obligation.deadline_time is None:
        return ""
    return obligation.deadline_time.strftime("%H:%M")
