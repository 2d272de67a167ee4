"""
Tests for the HTTP surface.

Covers:
- POST /api/v1/escalation/deadline-compliance (summary, as_of query)
- POST /api/v1/escalation/mandatory-reminders
- POST /api/v1/escalation/quorum-resolution
- X-Trigger-Key enforcement
- 503 on configuration failure, 500 on crash
- GET /api/v1/escalation/gateway/status
- GET /api/v1/compliance/gate (bearer token required)
- GET /health
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from escalation_engine.api.deps import get_db, get_escalation_scheduler
from escalation_engine.auth.jwt import create_access_token
from escalation_engine.config import settings
from escalation_engine.exceptions import ConfigurationError
from escalation_engine.main import create_app, install_services

AS_OF = "2026-10-19T20:00:00-03:00"


@pytest.fixture
def app(session_factory, gateway):
    application = create_app()
    install_services(application, session_factory, gateway)

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class FailingScheduler:
    def __init__(self, error: Exception):
        self._error = error

    async def run_deadline_compliance(self, as_of=None):
        raise self._error


# ── Trigger endpoints ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_deadline_compliance_summary(client, seed, transport):
    await seed.setting("channels.whatsapp.enabled", True)
    await seed.unit("U001", "Loja Centro")
    await seed.subject("Ana Souza")
    await seed.obligation("Abertura de Loja")

    response = await client.post("/api/v1/escalation/deadline-compliance", params={"as_of": AS_OF})

    assert response.status_code == 200, f"Response: {response.text}"
    data = response.json()
    assert data["family"] == "deadline"
    assert data["processed"] == 1
    assert data["alerted"] == 1
    assert data["by_channel"] == {"in_app": {"delivered": 1}, "whatsapp": {"delivered": 1}}
    assert data["details"][0]["target_ref"] == "U001"
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_gateway_failure_is_still_200(client, seed, transport):
    await seed.setting("channels.whatsapp.enabled", True)
    await seed.unit()
    await seed.subject()
    await seed.obligation()
    transport.status_code = 500

    response = await client.post("/api/v1/escalation/deadline-compliance", params={"as_of": AS_OF})

    assert response.status_code == 200
    detail = response.json()["details"][0]
    assert detail["channels"]["whatsapp"] == {"failed": 1}
    assert detail["failures"][0]["channel"] == "whatsapp"


@pytest.mark.asyncio
async def test_mandatory_reminders(client, seed):
    await seed.subject("Ana Souza")
    await seed.obligation("Código de Conduta", rule_family="persistence")

    response = await client.post("/api/v1/escalation/mandatory-reminders", params={"as_of": AS_OF})

    assert response.status_code == 200
    data = response.json()
    assert data["family"] == "persistence"
    assert data["alerted"] == 1


@pytest.mark.asyncio
async def test_quorum_resolution(client, seed, as_of):
    author = await seed.subject()
    await seed.proposal(author, 8, 10, as_of - timedelta(hours=1))

    response = await client.post("/api/v1/escalation/quorum-resolution", params={"as_of": AS_OF})

    assert response.status_code == 200
    data = response.json()
    assert data["approved"] == 1
    assert data["quorum_percentage"] == 80.0
    assert data["details"][0]["status"] == "approved"


@pytest.mark.asyncio
async def test_trigger_key_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "trigger_api_key", "s3cret")

    missing = await client.post("/api/v1/escalation/quorum-resolution")
    wrong = await client.post(
        "/api/v1/escalation/quorum-resolution", headers={"X-Trigger-Key": "nope"}
    )
    right = await client.post(
        "/api/v1/escalation/quorum-resolution", headers={"X-Trigger-Key": "s3cret"}
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert right.status_code == 200


@pytest.mark.asyncio
async def test_configuration_error_is_503(app, client):
    app.dependency_overrides[get_escalation_scheduler] = lambda: FailingScheduler(
        ConfigurationError("config_settings unreadable")
    )

    response = await client.post("/api/v1/escalation/deadline-compliance")

    assert response.status_code == 503
    assert "configuration" in response.json()["detail"].lower()


@pytest.mark.asyncio
async def test_crash_is_500(app, client):
    app.dependency_overrides[get_escalation_scheduler] = lambda: FailingScheduler(
        RuntimeError("resolver exploded")
    )

    response = await client.post("/api/v1/escalation/deadline-compliance")

    assert response.status_code == 500
    assert response.json()["status"] == 500
    assert "error_id" in response.json()


@pytest.mark.asyncio
async def test_gateway_status(client, transport):
    transport.body = {"connected": True}

    response = await client.get("/api/v1/escalation/gateway/status")

    assert response.status_code == 200
    assert response.json()["configured"] is True
    assert response.json()["connected"] is True


# ── Compliance gate ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gate_requires_token(client):
    response = await client.get("/api/v1/compliance/gate", params={"path": "/feed"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_gate_rejects_bad_token(client):
    response = await client.get(
        "/api/v1/compliance/gate",
        params={"path": "/feed"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_gate_blocks(client, seed):
    await seed.setting("compliance.block_access", True)
    ana = await seed.subject()
    obligation = await seed.obligation("Código de Conduta", rule_family="persistence")
    token = create_access_token(str(ana.id), role="colaborador")

    response = await client.get(
        "/api/v1/compliance/gate",
        params={"path": "/feed"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "blocked"
    assert data["redirect_to"] == f"/mandatory-content/{obligation.id}"


# ── Health ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers
