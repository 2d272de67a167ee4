"""
Escalation Engine — FastAPI Application.

Run: uvicorn escalation_engine.main:app --host 0.0.0.0 --port 8010

  - POST /api/v1/escalation/deadline-compliance
  - POST /api/v1/escalation/mandatory-reminders
  - POST /api/v1/escalation/quorum-resolution
  - GET  /api/v1/escalation/gateway/status
  - GET  /api/v1/compliance/gate?path=...
  - GET  /health, /ready
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from escalation_engine.api.routers.compliance import router as compliance_router
from escalation_engine.api.routers.escalation import router as escalation_router
from escalation_engine.config import settings
from escalation_engine.db.engine import close_db, get_engine, get_session_factory, init_db
from escalation_engine.escalation.channels import ChannelDispatcher
from escalation_engine.escalation.gate import ComplianceGate
from escalation_engine.escalation.scheduler import EscalationScheduler
from escalation_engine.logging_config import configure_logging
from escalation_engine.middleware.error_handler import ErrorHandlerMiddleware
from escalation_engine.middleware.request_context import RequestContextMiddleware
from escalation_engine.services.whatsapp_gateway import WhatsAppGateway

logger = structlog.get_logger(__name__)


def install_services(app: FastAPI, session_factory, gateway: WhatsAppGateway) -> None:
    """Attach the long-lived services the routers depend on."""
    app.state.gateway = gateway
    app.state.escalation = EscalationScheduler(
        session_factory=session_factory,
        dispatcher=ChannelDispatcher.default(gateway),
    )
    app.state.compliance_gate = ComplianceGate()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    configure_logging()
    logger.info("escalation_engine_starting", version=settings.app_version)
    if not settings.gateway_configured:
        logger.warning("whatsapp_gateway_not_configured", msg="WhatsApp channel will be skipped")
    await init_db()
    gateway = WhatsAppGateway()
    install_services(app, get_session_factory(), gateway)
    yield
    await gateway.close()
    await close_db()
    logger.info("escalation_engine_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description=(
            "Compliance & escalation notifications: deadline alerts, mandatory "
            "content reminders, quorum resolution and the compliance gate."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "escalation", "description": "Cron-triggered escalation runs"},
            {"name": "compliance", "description": "Navigation compliance gate"},
        ],
    )

    # ── Middleware (last added = outermost) ──────────────────────────
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(escalation_router)
    app.include_router(compliance_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does NOT check dependencies."""
        return {"status": "ok", "version": settings.app_version, "service": "escalation-engine"}

    @app.get("/ready", tags=["health"])
    async def readiness():
        """Readiness probe: database is a hard dependency, the gateway is soft."""
        checks: dict = {"api": "ok"}
        try:
            async with get_engine().connect() as conn:
                await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=5)
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "unavailable"

        checks["whatsapp_gateway"] = "configured" if settings.gateway_configured else "not_configured"
        ready = checks["database"] == "ok"
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"status": "ready" if ready else "not_ready", "checks": checks},
        )

    return app


app = create_app()
