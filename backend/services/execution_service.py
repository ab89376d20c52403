"""Execution ledger: job run logs, step logs and workflow executions."""

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, JobStatus, LogStatus
from core.exceptions import WorkflowAlreadyRunningError
from db.base import ensure_aware, utcnow
from db.models.execution_log import ExecutionLog
from db.models.job import Job
from db.models.workflow_execution import WorkflowExecution
from services.base import BaseService

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted by process restart"


def _duration_ms(start: datetime, end: datetime) -> int:
    return int((end - ensure_aware(start)).total_seconds() * 1000)


class ExecutionService(BaseService[ExecutionLog]):
    """Reads and writes the execution ledger."""

    def __init__(self, db: AsyncSession):
        super().__init__(ExecutionLog, db)

    # ─── Log entries ───────────────────────────────────────

    async def start_log(
        self,
        job_name: str,
        job_id: Optional[str] = None,
        workflow_execution_id: Optional[str] = None,
    ) -> ExecutionLog:
        """Open a ``running`` log entry."""
        return await self.create({
            "job_name": job_name,
            "job_id": job_id,
            "workflow_execution_id": workflow_execution_id,
            "status": LogStatus.RUNNING.value,
            "start_time": utcnow(),
        })

    async def finish_log(
        self,
        log: ExecutionLog,
        status: LogStatus,
        output: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExecutionLog:
        """Close a log entry with its outcome and duration."""
        end = utcnow()
        log.status = status.value
        log.end_time = end
        log.duration = _duration_ms(log.start_time, end)
        log.output = output
        log.error = error
        await self.db.flush()
        return log

    async def get_log(self, log_id: str) -> Optional[ExecutionLog]:
        return await self.get_by_id(log_id)

    async def list_logs(
        self,
        job_id: Optional[str] = None,
        workflow_execution_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> Sequence[ExecutionLog]:
        """Most recent log entries first."""
        query = select(ExecutionLog)
        if job_id:
            query = query.where(ExecutionLog.job_id == job_id)
        if workflow_execution_id:
            query = query.where(ExecutionLog.workflow_execution_id == workflow_execution_id)
        if since:
            query = query.where(ExecutionLog.start_time >= since)
        query = query.order_by(ExecutionLog.start_time.desc()).limit(limit)
        result = await self.db.execute(query)
        return result.scalars().all()

    # ─── Workflow executions ───────────────────────────────

    async def has_running_execution(self, workflow_id: str) -> bool:
        query = select(func.count()).select_from(WorkflowExecution).where(
            WorkflowExecution.workflow_id == workflow_id,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
        )
        result = await self.db.execute(query)
        return (result.scalar() or 0) > 0

    async def create_workflow_execution(
        self,
        workflow_id: str,
        trigger_type: str,
        context: dict[str, Any],
    ) -> WorkflowExecution:
        """Insert a ``running`` execution.

        Raises:
            WorkflowAlreadyRunningError: Another execution of the workflow is running.
        """
        if await self.has_running_execution(workflow_id):
            raise WorkflowAlreadyRunningError()

        execution = WorkflowExecution(
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING.value,
            current_step=0,
            context=copy.deepcopy(context),
            trigger_type=trigger_type,
            start_time=utcnow(),
        )
        self.db.add(execution)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            raise WorkflowAlreadyRunningError() from exc
        return execution

    async def snapshot(
        self,
        execution: WorkflowExecution,
        current_step: int,
        context: dict[str, Any],
    ) -> None:
        """Record the step about to run and the context it will see."""
        execution.current_step = current_step
        execution.context = copy.deepcopy(context)
        await self.db.flush()

    async def finish_workflow_execution(
        self,
        execution: WorkflowExecution,
        status: ExecutionStatus,
        context: dict[str, Any],
        error: Optional[str] = None,
    ) -> WorkflowExecution:
        execution.status = status.value
        execution.context = copy.deepcopy(context)
        execution.end_time = utcnow()
        execution.error = error
        await self.db.flush()
        return execution

    async def get_workflow_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        result = await self.db.execute(
            select(WorkflowExecution).where(WorkflowExecution.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def list_workflow_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = 50,
    ) -> Sequence[WorkflowExecution]:
        query = select(WorkflowExecution)
        if workflow_id:
            query = query.where(WorkflowExecution.workflow_id == workflow_id)
        query = query.order_by(WorkflowExecution.start_time.desc()).limit(limit)
        result = await self.db.execute(query)
        return result.scalars().all()

    # ─── Recovery & stats ──────────────────────────────────

    async def fail_interrupted_executions(self) -> int:
        """Mark executions and log entries left ``running`` by a dead process as failed.

        In-flight runs are not checkpointed, so they cannot be resumed.

        Returns:
            Number of workflow executions marked failed
        """
        now = utcnow()
        result = await self.db.execute(
            update(WorkflowExecution)
            .where(WorkflowExecution.status == ExecutionStatus.RUNNING.value)
            .values(status=ExecutionStatus.FAILED.value, end_time=now, error=INTERRUPTED_MESSAGE)
        )
        await self.db.execute(
            update(ExecutionLog)
            .where(ExecutionLog.status == LogStatus.RUNNING.value)
            .values(status=LogStatus.FAILURE.value, end_time=now, error=INTERRUPTED_MESSAGE)
        )
        await self.db.flush()
        count = result.rowcount or 0
        if count:
            logger.warning("Marked %d interrupted workflow execution(s) as failed", count)
        return count

    async def get_stats(self) -> dict[str, Any]:
        """Dashboard counters: jobs, recent failures and the next scheduled run."""
        total_jobs = (await self.db.execute(select(func.count()).select_from(Job))).scalar() or 0
        active_jobs = (
            await self.db.execute(
                select(func.count()).select_from(Job).where(Job.status == JobStatus.ACTIVE.value)
            )
        ).scalar() or 0
        failures = (
            await self.db.execute(
                select(func.count()).select_from(ExecutionLog).where(
                    ExecutionLog.status == LogStatus.FAILURE.value,
                    ExecutionLog.start_time >= utcnow() - timedelta(hours=24),
                )
            )
        ).scalar() or 0
        next_run = (
            await self.db.execute(
                select(func.min(Job.next_run)).where(Job.status == JobStatus.ACTIVE.value)
            )
        ).scalar()

        return {
            "total_jobs": total_jobs,
            "active_jobs": active_jobs,
            "failed_last_24h": failures,
            "next_execution": ensure_aware(next_run),
        }
