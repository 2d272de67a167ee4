"""
Escalation Schemas.

Enums, channel results, run summaries and gate decisions shared by the
resolver, ledger, dispatcher, scheduler and HTTP layer.
"""

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from escalation_engine.db.models import Obligation, Subject


# ── Enums ──────────────────────────────────────────────────────────────


class RuleFamily(StrEnum):
    DEADLINE = "deadline"           # daily, before a time-of-day (checklists)
    PERSISTENCE = "persistence"     # once, before continued use (mandatory content)


class AudienceScope(StrEnum):
    ALL = "all"
    ROLES = "roles"
    UNITS = "units"


class Channel(StrEnum):
    IN_APP = "in_app"
    WHATSAPP = "whatsapp"


class DeliveryStatus(StrEnum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"             # not attempted (disabled / opt-out / no contact)
    FAILED = "failed"               # attempted, transport or gateway error


class TargetKind(StrEnum):
    UNIT = "unit"
    SUBJECT = "subject"


class AdmitReason(StrEnum):
    ADMITTED = "admitted"
    ALREADY_ALERTED = "already_alerted_this_period"
    MAX_REMINDERS = "max_reminders_reached"


class RecordOutcome(StrEnum):
    RECORDED = "recorded"
    CONFLICT = "conflict"           # concurrent writer won, counts as success


class ProposalStatus(StrEnum):
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"


class GateState(StrEnum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"


DEFAULT_CHANNELS: dict[RuleFamily, tuple[Channel, ...]] = {
    RuleFamily.DEADLINE: (Channel.IN_APP, Channel.WHATSAPP),
    RuleFamily.PERSISTENCE: (Channel.IN_APP, Channel.WHATSAPP),
}


# ── Targets ────────────────────────────────────────────────────────────


@dataclass
class OutstandingTarget:
    """
    An (obligation, subject-or-unit) pair that is currently outstanding.

    Deadline rules produce UNIT targets: recipients are the unit's
    applicable active members, missing are those without a submission.
    Persistence rules produce SUBJECT targets with a single recipient.
    """
    obligation: Obligation
    kind: TargetKind
    ref: str
    display_name: str
    recipients: list[Subject] = field(default_factory=list)
    missing: list[Subject] = field(default_factory=list)

    @property
    def unit_code(self) -> Optional[str]:
        if self.kind == TargetKind.UNIT:
            return self.ref
        return self.recipients[0].unit_code if self.recipients else None


# ── Messages & channel results ─────────────────────────────────────────


class RenderedMessage(BaseModel):
    """A message ready for dispatch."""
    title: str
    body: str
    type: str = "alert"
    reference_id: Optional[str] = None
    whatsapp_body: Optional[str] = None

    @property
    def whatsapp_text(self) -> str:
        return self.whatsapp_body or f"*{self.title}*\n\n{self.body}"


class ChannelResult(BaseModel):
    """Outcome of one channel for one recipient."""
    channel: Channel
    status: DeliveryStatus
    reason: Optional[str] = None        # why it was skipped
    error: Optional[str] = None         # why it failed (gateway body, exception)

    @classmethod
    def delivered(cls, channel: Channel) -> "ChannelResult":
        return cls(channel=channel, status=DeliveryStatus.DELIVERED)

    @classmethod
    def skipped(cls, channel: Channel, reason: str) -> "ChannelResult":
        return cls(channel=channel, status=DeliveryStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, channel: Channel, error: str) -> "ChannelResult":
        return cls(channel=channel, status=DeliveryStatus.FAILED, error=error)


# ── Run summaries ──────────────────────────────────────────────────────


class PairOutcome(BaseModel):
    """What happened to one target in one run."""
    obligation_id: str
    obligation_title: str
    target_kind: TargetKind
    target_ref: str
    display_name: str
    admitted: bool = False
    skip_reason: Optional[str] = None
    channels: dict[str, dict[str, int]] = Field(default_factory=dict)
    escalation_channels: dict[str, dict[str, int]] = Field(default_factory=dict)
    failures: list[dict] = Field(default_factory=list)
    delivered: bool = False
    record_outcome: Optional[RecordOutcome] = None
    error: Optional[str] = None


class RunSummary(BaseModel):
    """Per-run summary returned to the invoker."""
    run_id: str
    family: RuleFamily
    as_of: str
    processed: int = 0
    alerted: int = 0
    suppressed: int = 0
    errors: int = 0
    details: list[PairOutcome] = Field(default_factory=list)
    by_obligation: dict[str, dict[str, int]] = Field(default_factory=dict)
    by_unit: dict[str, dict[str, int]] = Field(default_factory=dict)
    by_channel: dict[str, dict[str, int]] = Field(default_factory=dict)
    by_escalation: dict[str, dict[str, int]] = Field(default_factory=dict)


class ProposalResolution(BaseModel):
    """Terminal transition applied to one expired proposal."""
    proposal_id: str
    code: str
    title: str
    status: ProposalStatus
    approval_rate: float
    published: bool = False
    notified: dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None


class QuorumSummary(BaseModel):
    run_id: str
    as_of: str
    quorum_percentage: float
    processed: int = 0
    approved: int = 0
    rejected: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[ProposalResolution] = Field(default_factory=list)


# ── Compliance gate ────────────────────────────────────────────────────


class GateDecision(BaseModel):
    state: GateState
    reason: str
    redirect_to: Optional[str] = None
    obligation_id: Optional[uuid.UUID] = None

    @property
    def blocked(self) -> bool:
        return self.state == GateState.BLOCKED
