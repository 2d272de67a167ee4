"""
Tests for the APScheduler job runner.
"""

import pytest
from structlog.testing import capture_logs

from escalation_engine.services.scheduler import EscalationJobRunner


class BrokenEscalation:
    async def run_deadline_compliance(self, as_of=None):
        raise RuntimeError("database gone")


@pytest.mark.asyncio
async def test_jobs_registered_single_flight():
    runner = EscalationJobRunner(BrokenEscalation())
    runner.start()
    try:
        jobs = {job.id: job for job in runner.scheduler.get_jobs()}
        assert set(jobs) == {"deadline_compliance", "mandatory_reminders", "quorum_resolution"}
        assert all(job.max_instances == 1 and job.coalesce for job in jobs.values())
    finally:
        runner.stop()


@pytest.mark.asyncio
async def test_job_failure_is_logged_not_raised():
    runner = EscalationJobRunner(BrokenEscalation())

    with capture_logs() as logs:
        await runner.run_deadline_compliance()

    failed = [e for e in logs if e["event"] == "job_failed"]
    assert failed == [
        {"event": "job_failed", "log_level": "error", "job": "deadline_compliance", "error": "database gone"}
    ]
