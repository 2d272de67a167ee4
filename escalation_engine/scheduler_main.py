"""
Scheduler Entry Point — runs in a separate container.

Usage:
    python -m escalation_engine.scheduler_main

This does NOT run a web server. It runs the APScheduler background loop
for deadline compliance, mandatory reminders and quorum resolution.
"""

import asyncio
import signal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from escalation_engine.config import settings
from escalation_engine.escalation.channels import ChannelDispatcher
from escalation_engine.escalation.scheduler import EscalationScheduler
from escalation_engine.logging_config import configure_logging
from escalation_engine.services.scheduler import EscalationJobRunner
from escalation_engine.services.whatsapp_gateway import WhatsAppGateway

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    # Database
    kwargs: dict = {"echo": settings.debug}
    if not settings.async_database_url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=5)
    engine = create_async_engine(settings.async_database_url, **kwargs)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    gateway = WhatsAppGateway()
    escalation = EscalationScheduler(
        session_factory=session_factory,
        dispatcher=ChannelDispatcher.default(gateway),
    )
    runner = EscalationJobRunner(escalation)

    # Close anything that expired while we were down
    logger.info("running_initial_quorum_resolution")
    await runner.run_quorum_resolution()

    runner.start()

    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")
    await stop_event.wait()

    runner.stop()
    await gateway.close()
    await engine.dispose()
    logger.info("scheduler_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
