"""Job service: CRUD for scheduled jobs, keeping the scheduler in sync."""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import JobStatus
from core.exceptions import NotFoundError, ValidationError
from core.schemas import dump_action
from db.models.job import Job
from services.base import BaseService
from triggers.handlers.schedule import compute_next_run, validate_cron

logger = logging.getLogger(__name__)


class JobService(BaseService[Job]):
    """Service for job definitions.

    Args:
        db: Session; the caller commits
        scheduler: Optional TriggerManager notified of schedule changes
    """

    def __init__(self, db: AsyncSession, scheduler=None):
        super().__init__(Job, db)
        self.scheduler = scheduler

    @staticmethod
    def _check_cron(expr: str) -> None:
        is_valid, error = validate_cron(expr)
        if not is_valid:
            raise ValidationError(error)

    @staticmethod
    def _check_status(value: str) -> str:
        try:
            return JobStatus(value).value
        except ValueError as exc:
            raise ValidationError(f"Invalid job status: {value}") from exc

    async def get_job(self, job_id: str) -> Job:
        job = await self.get_by_id(job_id)
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def get_active_jobs(self) -> Sequence[Job]:
        result = await self.db.execute(
            select(Job).where(Job.status == JobStatus.ACTIVE.value).order_by(Job.created_at)
        )
        return result.scalars().all()

    async def create_job(
        self,
        name: str,
        cron_expression: str,
        action: Any,
        description: Optional[str] = None,
        status: str = JobStatus.ACTIVE.value,
        depends_on: Optional[str] = None,
        notify_on_failure: bool = False,
        notification_webhook: Optional[str] = None,
    ) -> Job:
        """Create a job and schedule it when active."""
        self._check_cron(cron_expression)
        status = self._check_status(status)
        job = await self.create({
            "name": name,
            "description": description,
            "cron_expression": cron_expression,
            "status": status,
            "action": dump_action(action),
            "depends_on": depends_on,
            "notify_on_failure": notify_on_failure,
            "notification_webhook": notification_webhook,
            "next_run": compute_next_run(cron_expression) if status == JobStatus.ACTIVE.value else None,
            "version": 1,
        })
        logger.info("Job created: %s (%s)", job.name, job.id)

        if self.scheduler and job.is_active:
            await self.scheduler.schedule_job(job)
        return job

    async def update_job(self, job_id: str, **changes: Any) -> Job:
        """Apply ``changes``, bump the version and resync the schedule.

        ``next_run`` is recomputed for active jobs and cleared for paused ones.
        """
        job = await self.get_job(job_id)
        was_active = job.is_active

        if "cron_expression" in changes:
            self._check_cron(changes["cron_expression"])
        if "action" in changes:
            changes["action"] = dump_action(changes["action"])
        if "status" in changes:
            changes["status"] = self._check_status(changes["status"])

        changes["version"] = job.version + 1
        cron = changes.get("cron_expression", job.cron_expression)
        now_active = changes.get("status", job.status) == JobStatus.ACTIVE.value
        changes["next_run"] = compute_next_run(cron) if now_active else None

        job = await self.update(job_id, changes)
        logger.info("Job updated: %s (version %d)", job.id, job.version)

        if self.scheduler:
            if was_active and not now_active:
                await self.scheduler.unschedule_job(job.id)
            elif now_active:
                await self.scheduler.schedule_job(job)
        return job

    async def delete_job(self, job_id: str) -> bool:
        """Unschedule and delete a job."""
        if self.scheduler:
            await self.scheduler.unschedule_job(job_id)
        deleted = await self.delete(job_id)
        if deleted:
            logger.info("Job deleted: %s", job_id)
        return deleted

    async def update_run_times(
        self,
        job_id: str,
        last_run: datetime,
        next_run: Optional[datetime],
    ) -> Optional[Job]:
        """Record run bookkeeping without touching the version."""
        job = await self.get_by_id(job_id)
        if not job:
            return None
        job.last_run = last_run
        job.next_run = next_run
        await self.db.flush()
        return job
