"""
Tests for the Compliance Gate.

Covers:
- Blocked with a redirect to the first unmet persistence obligation
- Exempt paths, disabled switch, and satisfied obligations are allowed
- Unit-level fulfillment satisfies the member
- Evaluation errors fail open and are logged once
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog.testing import capture_logs

from escalation_engine.escalation.gate import ComplianceGate, is_exempt
from escalation_engine.escalation.schemas import GateState

EXEMPT = ["/mandatory-content", "/auth", "/forgot-password"]


@pytest.fixture
def gate():
    return ComplianceGate(
        exempt_paths=EXEMPT,
        fulfillment_path_template="/mandatory-content/{obligation_id}",
    )


def test_exempt_matches_segments():
    assert is_exempt("/auth", EXEMPT)
    assert is_exempt("/auth/callback", EXEMPT)
    assert is_exempt("mandatory-content/123", EXEMPT)
    assert not is_exempt("/authors", EXEMPT)
    assert not is_exempt("/", EXEMPT)


class TestGate:
    @pytest.mark.asyncio
    async def test_blocks_on_first_unmet(self, gate, db, seed, as_of):
        await seed.setting("compliance.block_access", True)
        ana = await seed.subject()
        done = await seed.obligation("Código de Conduta", rule_family="persistence", sort_order=1)
        pending = await seed.obligation("Política de Privacidade", rule_family="persistence", sort_order=2)
        await seed.obligation("Treinamento Opcional", rule_family="persistence", sort_order=3)
        await seed.fulfillment(done, as_of - timedelta(days=1), subject=ana)

        decision = await gate.check(db, ana.id, "/dashboard")

        assert decision.state == GateState.BLOCKED
        assert decision.blocked
        assert decision.obligation_id == pending.id
        assert decision.redirect_to == f"/mandatory-content/{pending.id}"

    @pytest.mark.asyncio
    async def test_exempt_path_allowed(self, gate, db, seed):
        await seed.setting("compliance.block_access", True)
        ana = await seed.subject()
        await seed.obligation(rule_family="persistence")

        decision = await gate.check(db, ana.id, "/mandatory-content/abc")

        assert decision.state == GateState.ALLOWED
        assert decision.reason == "exempt_path"

    @pytest.mark.asyncio
    async def test_switch_off_allows(self, gate, db, seed):
        ana = await seed.subject()
        await seed.obligation(rule_family="persistence")

        decision = await gate.check(db, ana.id, "/dashboard")

        assert decision.state == GateState.ALLOWED
        assert decision.reason == "blocking_disabled"

    @pytest.mark.asyncio
    async def test_all_met_allows(self, gate, db, seed, as_of):
        await seed.setting("compliance.block_access", True)
        ana = await seed.subject()
        obligation = await seed.obligation(rule_family="persistence")
        await seed.fulfillment(obligation, as_of, subject=ana)

        decision = await gate.check(db, ana.id, "/dashboard")

        assert decision.reason == "all_obligations_met"

    @pytest.mark.asyncio
    async def test_unit_fulfillment_counts(self, gate, db, seed, as_of):
        await seed.setting("compliance.block_access", True)
        ana = await seed.subject(unit_code="U001")
        obligation = await seed.obligation(rule_family="persistence")
        await seed.fulfillment(obligation, as_of, unit_code="U001")

        decision = await gate.check(db, ana.id, "/dashboard")

        assert decision.state == GateState.ALLOWED

    @pytest.mark.asyncio
    async def test_inapplicable_obligation_ignored(self, gate, db, seed):
        await seed.setting("compliance.block_access", True)
        ana = await seed.subject(role="colaborador")
        await seed.obligation(
            rule_family="persistence", audience="roles", audience_values=["franqueado"]
        )

        decision = await gate.check(db, ana.id, "/dashboard")

        assert decision.reason == "all_obligations_met"

    @pytest.mark.asyncio
    async def test_unknown_subject_allowed(self, gate, db, seed):
        await seed.setting("compliance.block_access", True)
        await seed.obligation(rule_family="persistence")

        decision = await gate.check(db, uuid.uuid4(), "/dashboard")

        assert decision.reason == "unknown_subject"


@pytest.mark.asyncio
async def test_fails_open_on_error(gate, empty_engine):
    factory = async_sessionmaker(empty_engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        with capture_logs() as logs:
            decision = await gate.check(session, uuid.uuid4(), "/dashboard")

    assert decision.state == GateState.ALLOWED
    assert decision.reason == "evaluation_error"
    errors = [e["event"] for e in logs if e["log_level"] == "error"]
    assert errors == ["compliance_gate_failed_open"]
