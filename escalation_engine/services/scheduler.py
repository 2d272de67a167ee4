"""
Escalation Job Runner — runs in a separate process (escalation-scheduler).

NOT inside the API process. The HTTP trigger endpoints remain available
for external cron invokers; this runner is the in-house alternative.

Jobs:
1. Deadline compliance (every N minutes) — unit-level checklist alerts
2. Mandatory reminders (daily at REMINDER_CRON_HOUR, local time)
3. Quorum resolution (every N minutes) — close expired votes

Every job is single-flight (max_instances=1) and coalesced, so a slow
run is never overlapped by the next tick.
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from escalation_engine.config import settings
from escalation_engine.escalation.scheduler import EscalationScheduler

logger = structlog.get_logger(__name__)


class EscalationJobRunner:
    """Registers escalation runs with APScheduler."""

    def __init__(self, escalation: EscalationScheduler):
        self.escalation = escalation
        self.scheduler = AsyncIOScheduler(timezone=settings.escalation_timezone)

    def start(self):
        """Register and start all scheduled jobs."""
        self.scheduler.add_job(
            self.run_deadline_compliance,
            IntervalTrigger(minutes=settings.deadline_check_interval_minutes),
            id="deadline_compliance",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_mandatory_reminders,
            CronTrigger(hour=settings.reminder_cron_hour, minute=0),
            id="mandatory_reminders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_quorum_resolution,
            IntervalTrigger(minutes=settings.quorum_check_interval_minutes),
            id="quorum_resolution",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("escalation_scheduler_started", jobs=[j.id for j in self.scheduler.get_jobs()])

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("escalation_scheduler_stopped")

    async def run_deadline_compliance(self):
        try:
            summary = await self.escalation.run_deadline_compliance()
            logger.info("job_completed", job="deadline_compliance", alerted=summary.alerted)
        except Exception as e:
            logger.error("job_failed", job="deadline_compliance", error=str(e))

    async def run_mandatory_reminders(self):
        try:
            summary = await self.escalation.run_mandatory_reminders()
            logger.info("job_completed", job="mandatory_reminders", alerted=summary.alerted)
        except Exception as e:
            logger.error("job_failed", job="mandatory_reminders", error=str(e))

    async def run_quorum_resolution(self):
        try:
            summary = await self.escalation.run_quorum_resolution()
            logger.info("job_completed", job="quorum_resolution", processed=summary.processed)
        except Exception as e:
            logger.error("job_failed", job="quorum_resolution", error=str(e))
