"""Runs single-action jobs and records them in the execution ledger."""

import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import LogStatus
from core.exceptions import EngineException
from db.base import utcnow
from db.models.execution_log import ExecutionLog
from notifications.manager import NotificationManager
from services.execution_service import ExecutionService
from services.job_service import JobService
from tasks.executor import ActionExecutor
from triggers.handlers.schedule import compute_next_run

logger = structlog.get_logger(__name__)


class JobRunner:
    """Executes a job's action once.

    Job runs may overlap: a tick fires even when the previous run of the
    same job is still in flight.

    Args:
        session_factory: Async session factory
        executor: Action executor (injectable for tests)
        notifier: Notification manager for failure webhooks
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: Optional[ActionExecutor] = None,
        notifier: Optional[NotificationManager] = None,
    ):
        self._session_factory = session_factory
        self._executor = executor or ActionExecutor()
        self._notifier = notifier or NotificationManager()
        self._background: set[asyncio.Task] = set()

    async def run_job(self, job_id: str) -> ExecutionLog:
        """Run a job's action and update its log entry and run times.

        Action failures are recorded, not raised.

        Raises:
            NotFoundError: Unknown job
        """
        async with self._session_factory() as session:
            jobs = JobService(session)
            ledger = ExecutionService(session)

            job = await jobs.get_job(job_id)
            entry = await ledger.start_log(job.name, job_id=job.id)
            await session.commit()

            log = logger.bind(job_id=job.id, job=job.name, log_id=entry.id)
            error: Optional[str] = None
            try:
                output = await self._executor.execute(job.action, {})
            except EngineException as exc:
                error = exc.message
            except Exception as exc:
                log.exception("Job action raised unexpectedly")
                error = str(exc) or type(exc).__name__

            if error is None:
                await ledger.finish_log(entry, LogStatus.SUCCESS, output=output)
                log.info("Job run succeeded")
            else:
                await ledger.finish_log(entry, LogStatus.FAILURE, error=error)
                log.warning("Job run failed", error=error)

            now = utcnow()
            await jobs.update_run_times(job.id, now, compute_next_run(job.cron_expression, after=now))
            await session.commit()

        if error is not None and job.notify_on_failure and job.notification_webhook:
            self._notify_in_background(job, error)
        return entry

    def _notify_in_background(self, job, error: str) -> None:
        task = asyncio.create_task(self._notifier.notify_job_failed(job, error))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_notifications(self) -> None:
        """Wait for pending failure notifications (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
