"""
FastAPI dependencies for database sessions and caller identity.

Two kinds of callers:
- cron invokers hitting the trigger endpoints (optional X-Trigger-Key)
- the frontend asking the compliance gate (JWT bearer token)
"""

import hmac
import uuid
from typing import AsyncGenerator

import structlog
from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.auth.jwt import TokenError, decode_token
from escalation_engine.config import settings
from escalation_engine.db.engine import get_session_factory

logger = structlog.get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async DB session, committed on success."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_subject_id(request: Request) -> uuid.UUID:
    """Subject id from the Authorization: Bearer token."""
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        payload = decode_token(token.strip())
        return uuid.UUID(str(payload["sub"]))
    except (TokenError, ValueError) as e:
        logger.warning("invalid_token", error=str(e))
        raise HTTPException(status_code=401, detail="Invalid token")


def verify_trigger_key(x_trigger_key: str | None = Header(default=None)) -> None:
    """Require X-Trigger-Key when TRIGGER_API_KEY is set."""
    expected = settings.trigger_api_key
    if not expected:
        return
    if not x_trigger_key or not hmac.compare_digest(x_trigger_key, expected):
        logger.warning("trigger_key_rejected")
        raise HTTPException(status_code=401, detail="Invalid trigger key")
