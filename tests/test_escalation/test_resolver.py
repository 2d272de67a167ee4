"""
Tests for the Target Resolver.

Covers:
- Deadline obligations are not outstanding before the deadline
- Unit-level targets with missing members after the deadline
- Unit-level and member submissions satisfy the period
- Yesterday's submission does not satisfy today
- Persistence obligations per member, no time window
- Applicability errors exclude the subject and are logged
- Expired proposals
"""

import uuid
from datetime import datetime, timedelta, time

import pytest
from structlog.testing import capture_logs

from escalation_engine.db.models import Obligation, Subject
from escalation_engine.escalation.resolver import TargetResolver, is_applicable
from escalation_engine.escalation.schemas import TargetKind
from escalation_engine.exceptions import ApplicabilityError


@pytest.fixture
def resolver():
    return TargetResolver()


async def _resolve(resolver, db, obligation, as_of, config):
    return await resolver.resolve(db, [obligation], as_of, config)


# ── Deadline family ────────────────────────────────────────────────────


class TestDeadline:
    @pytest.mark.asyncio
    async def test_not_outstanding_before_deadline(self, resolver, db, seed, config, tz):
        await seed.unit()
        await seed.subject()
        obligation = await seed.obligation(deadline_time=time(18, 0))

        before = datetime(2026, 10, 19, 17, 30, tzinfo=tz)
        assert await _resolve(resolver, db, obligation, before, config) == []

    @pytest.mark.asyncio
    async def test_unit_outstanding_after_deadline(self, resolver, db, seed, config, as_of):
        await seed.unit("U001", "Loja Centro")
        ana = await seed.subject("Ana Souza", unit_code="U001")
        bruno = await seed.subject("Bruno Lima", unit_code="U001")
        obligation = await seed.obligation()

        targets = await _resolve(resolver, db, obligation, as_of, config)

        assert len(targets) == 1
        target = targets[0]
        assert target.kind == TargetKind.UNIT
        assert target.ref == "U001"
        assert target.display_name == "Loja Centro"
        assert {s.id for s in target.recipients} == {ana.id, bruno.id}
        assert {s.id for s in target.missing} == {ana.id, bruno.id}

    @pytest.mark.asyncio
    async def test_unit_submission_satisfies_unit(self, resolver, db, seed, config, as_of):
        await seed.unit()
        await seed.subject()
        obligation = await seed.obligation()
        await seed.fulfillment(obligation, as_of - timedelta(hours=3), unit_code="U001")

        assert await _resolve(resolver, db, obligation, as_of, config) == []

    @pytest.mark.asyncio
    async def test_fulfilled_member_is_not_missing(self, resolver, db, seed, config, as_of):
        await seed.unit()
        ana = await seed.subject("Ana Souza")
        bruno = await seed.subject("Bruno Lima")
        obligation = await seed.obligation()
        await seed.fulfillment(obligation, as_of - timedelta(hours=1), subject=ana)

        targets = await _resolve(resolver, db, obligation, as_of, config)

        assert [s.id for s in targets[0].missing] == [bruno.id]

    @pytest.mark.asyncio
    async def test_all_members_fulfilled(self, resolver, db, seed, config, as_of):
        await seed.unit()
        ana = await seed.subject()
        obligation = await seed.obligation()
        await seed.fulfillment(obligation, as_of - timedelta(hours=1), subject=ana)

        assert await _resolve(resolver, db, obligation, as_of, config) == []

    @pytest.mark.asyncio
    async def test_yesterday_does_not_count(self, resolver, db, seed, config, as_of):
        await seed.unit()
        await seed.subject()
        obligation = await seed.obligation()
        await seed.fulfillment(obligation, as_of - timedelta(days=1), unit_code="U001")

        assert len(await _resolve(resolver, db, obligation, as_of, config)) == 1

    @pytest.mark.asyncio
    async def test_failed_submission_does_not_count(self, resolver, db, seed, config, as_of):
        await seed.unit()
        await seed.subject()
        obligation = await seed.obligation()
        await seed.fulfillment(obligation, as_of - timedelta(hours=1), unit_code="U001", success=False)

        assert len(await _resolve(resolver, db, obligation, as_of, config)) == 1

    @pytest.mark.asyncio
    async def test_inactive_subjects_ignored(self, resolver, db, seed, config, as_of):
        await seed.unit()
        await seed.subject(is_active=False)
        obligation = await seed.obligation()

        assert await _resolve(resolver, db, obligation, as_of, config) == []

    @pytest.mark.asyncio
    async def test_subject_without_unit_excluded(self, resolver, db, seed, config, as_of):
        await seed.subject(unit_code=None)
        obligation = await seed.obligation()

        with capture_logs() as logs:
            targets = await _resolve(resolver, db, obligation, as_of, config)

        assert targets == []
        assert any(e["event"] == "subject_excluded_from_resolution" for e in logs)


# ── Persistence family ─────────────────────────────────────────────────


class TestPersistence:
    @pytest.mark.asyncio
    async def test_per_member_targets(self, resolver, db, seed, config, as_of):
        ana = await seed.subject("Ana Souza")
        bruno = await seed.subject("Bruno Lima")
        obligation = await seed.obligation("Código de Conduta", rule_family="persistence")
        # fulfilled long ago still counts, no time window
        await seed.fulfillment(obligation, as_of - timedelta(days=90), subject=ana)

        targets = await _resolve(resolver, db, obligation, as_of, config)

        assert len(targets) == 1
        assert targets[0].kind == TargetKind.SUBJECT
        assert targets[0].ref == str(bruno.id)
        assert targets[0].display_name == "Bruno Lima"

    @pytest.mark.asyncio
    async def test_role_audience(self, resolver, db, seed, config, as_of):
        await seed.subject("Ana Souza", role="colaborador")
        franq = await seed.subject("Carla Dias", role="franqueado")
        obligation = await seed.obligation(
            "Manual do Franqueado",
            rule_family="persistence",
            audience="roles",
            audience_values=["franqueado"],
        )

        targets = await _resolve(resolver, db, obligation, as_of, config)

        assert [t.ref for t in targets] == [str(franq.id)]

    @pytest.mark.asyncio
    async def test_applicability_error_excludes_subject_only(self, resolver, db, seed, config, as_of):
        await seed.subject("Sem Papel", role=None)
        ok = await seed.subject("Carla Dias", role="franqueado")
        obligation = await seed.obligation(
            rule_family="persistence", audience="roles", audience_values=["franqueado"]
        )

        with capture_logs() as logs:
            targets = await _resolve(resolver, db, obligation, as_of, config)

        assert [t.ref for t in targets] == [str(ok.id)]
        excluded = [e for e in logs if e["event"] == "subject_excluded_from_resolution"]
        assert len(excluded) == 1
        assert excluded[0]["reason"] == "subject has no role"


class TestApplicability:
    def _obligation(self, audience, values=None):
        return Obligation(id=uuid.uuid4(), title="x", rule_family="persistence",
                          audience=audience, audience_values=values or [])

    def _subject(self, **kwargs):
        return Subject(id=uuid.uuid4(), full_name="x", **kwargs)

    def test_all(self):
        assert is_applicable(self._obligation("all"), self._subject())

    def test_units(self):
        obligation = self._obligation("units", ["U001"])
        assert is_applicable(obligation, self._subject(unit_code="U001"))
        assert not is_applicable(obligation, self._subject(unit_code="U002"))

    def test_unknown_scope_raises(self):
        with pytest.raises(ApplicabilityError):
            is_applicable(self._obligation("everyone-but-bob"), self._subject())


# ── Proposals ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_expired_proposals(resolver, db, seed, as_of):
    author = await seed.subject()
    expired = await seed.proposal(author, 1, 2, as_of - timedelta(hours=1), code="IDEA-1")
    await seed.proposal(author, 1, 2, as_of + timedelta(hours=1), code="IDEA-2")
    await seed.proposal(author, 1, 2, as_of - timedelta(days=2), code="IDEA-3", status="approved")

    proposals = await resolver.resolve_expired_proposals(db, as_of)

    assert [p.id for p in proposals] == [expired.id]
