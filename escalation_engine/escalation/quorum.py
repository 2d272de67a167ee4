"""
Quorum resolution for time-boxed proposals.

approval_rate = positive / total * 100, or 0 when nobody voted.
approved iff approval_rate >= quorum_percentage, otherwise rejected.
"""

from decimal import ROUND_HALF_UP, Decimal

from escalation_engine.escalation.schemas import ProposalStatus


def compute_approval_rate(positive_votes: int, total_votes: int) -> float:
    if not total_votes or total_votes <= 0:
        return 0.0
    return positive_votes * 100 / total_votes


def resolve_status(approval_rate: float, quorum_percentage: float) -> ProposalStatus:
    if approval_rate >= quorum_percentage:
        return ProposalStatus.APPROVED
    return ProposalStatus.REJECTED


def stored_rate(approval_rate: float) -> Decimal:
    """Rate as persisted in proposals.quorum (two decimals)."""
    return Decimal(str(approval_rate)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
