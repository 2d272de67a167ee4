"""
Test fixtures for escalation engine tests.

Provides:
- Async engine on a per-test SQLite file (separate sessions really are
  separate connections, like the ledger's own transactions in production)
- Session factory and a plain session
- Seed helper for units, subjects, obligations, fulfillment, settings
- WhatsApp gateway over httpx.MockTransport
"""

import uuid
from datetime import datetime, time
from typing import AsyncGenerator, Optional
from zoneinfo import ZoneInfo

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from escalation_engine.db.engine import Base
from escalation_engine.db.models import (
    ConfigSetting,
    FulfillmentRecord,
    Obligation,
    Proposal,
    Subject,
    Unit,
)
from escalation_engine.escalation.periods import to_utc_naive
from escalation_engine.escalation.settings_store import EscalationConfig
from escalation_engine.services.whatsapp_gateway import GatewayConfig, WhatsAppGateway

TZ = ZoneInfo("America/Sao_Paulo")


@pytest.fixture
def tz() -> ZoneInfo:
    return TZ


@pytest.fixture
def as_of() -> datetime:
    """20:00 local on 2026-10-19, after every default test deadline."""
    return datetime(2026, 10, 19, 20, 0, tzinfo=TZ)


@pytest.fixture
def config() -> EscalationConfig:
    return EscalationConfig(timezone="America/Sao_Paulo", whatsapp_enabled=True)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Test database engine with all tables."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'escalation.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def empty_engine(tmp_path):
    """Engine on a database without tables, every query fails."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", echo=False)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Seed helper ─────────────────────────────────────────────────────────


class Seed:
    """Writes fixture rows, each call in its own committed transaction."""

    def __init__(self, session_factory):
        self._factory = session_factory

    async def _add(self, *rows):
        async with self._factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def unit(self, code: str = "U001", name: str = "Loja Centro") -> Unit:
        return await self._add(Unit(code=code, name=name))

    async def subject(
        self,
        full_name: str = "Ana Souza",
        unit_code: Optional[str] = "U001",
        role: Optional[str] = "colaborador",
        phone: Optional[str] = "+55 (11) 99999-0001",
        **kwargs,
    ) -> Subject:
        return await self._add(
            Subject(
                id=uuid.uuid4(),
                full_name=full_name,
                unit_code=unit_code,
                role=role,
                phone=phone,
                **kwargs,
            )
        )

    async def obligation(
        self,
        title: str = "Abertura de Loja",
        rule_family: str = "deadline",
        deadline_time: Optional[time] = time(18, 0),
        channels: Optional[list] = None,
        **kwargs,
    ) -> Obligation:
        if rule_family != "deadline":
            deadline_time = None
        return await self._add(
            Obligation(
                id=uuid.uuid4(),
                title=title,
                rule_family=rule_family,
                deadline_time=deadline_time,
                channels=channels if channels is not None else ["in_app", "whatsapp"],
                **kwargs,
            )
        )

    async def fulfillment(
        self,
        obligation: Obligation,
        at: datetime,
        subject: Optional[Subject] = None,
        unit_code: Optional[str] = None,
        success: bool = True,
    ) -> FulfillmentRecord:
        return await self._add(
            FulfillmentRecord(
                obligation_id=obligation.id,
                subject_id=subject.id if subject else None,
                unit_code=unit_code,
                success=success,
                recorded_at=to_utc_naive(at),
            )
        )

    async def setting(self, key: str, value) -> ConfigSetting:
        async with self._factory() as session:
            row = await session.get(ConfigSetting, key)
            if row is None:
                row = ConfigSetting(key=key, value=value)
                session.add(row)
            else:
                row.value = value
            await session.commit()
        return row

    async def proposal(
        self,
        author: Subject,
        positive: int,
        total: int,
        vote_end: datetime,
        code: str = "IDEA-001",
        title: str = "Programa de fidelidade",
        **kwargs,
    ) -> Proposal:
        return await self._add(
            Proposal(
                id=uuid.uuid4(),
                code=code,
                title=title,
                description=kwargs.pop("description", "Pontos a cada compra."),
                positive_votes=positive,
                total_votes=total,
                vote_end=to_utc_naive(vote_end),
                submitted_by=author.id,
                **kwargs,
            )
        )


@pytest.fixture
def seed(session_factory) -> Seed:
    return Seed(session_factory)


# ── Gateway ─────────────────────────────────────────────────────────────


GATEWAY_CONFIG = GatewayConfig(
    base_url="https://zapi.test",
    instance_id="inst-1",
    token="tok-1",
    client_token="client-1",
    timeout_seconds=2.0,
)


class RecordingTransport:
    """httpx handler recording requests and answering with a fixed status."""

    def __init__(self, status_code: int = 200, body: Optional[dict] = None, error: Optional[Exception] = None):
        self.status_code = status_code
        self.body = body if body is not None else {"messageId": "msg-1"}
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def gateway(transport) -> AsyncGenerator[WhatsAppGateway, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    gw = WhatsAppGateway(config=GATEWAY_CONFIG, client=client)
    yield gw
    await client.aclose()
