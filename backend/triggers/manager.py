"""Trigger Manager: the scheduler table.

Owns one CronTrigger per scheduled job or workflow, keyed ``job:<id>`` /
``workflow:<id>``. Scheduling an existing key replaces its trigger. The
table is guarded by an asyncio.Lock so concurrent definition updates
cannot leave two triggers for one key.
"""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from triggers.base import TriggerCallback, TriggerTarget, trigger_key
from triggers.handlers.schedule import CronTrigger, validate_cron

logger = logging.getLogger(__name__)


class TriggerManager:
    """Owns every active cron trigger in this process.

    Args:
        on_job: Async callback receiving a TriggerEvent for job ticks
        on_workflow: Async callback receiving a TriggerEvent for workflow ticks
    """

    def __init__(self, on_job: TriggerCallback, on_workflow: TriggerCallback):
        self._callbacks = {
            TriggerTarget.JOB: on_job,
            TriggerTarget.WORKFLOW: on_workflow,
        }
        self._triggers: dict[str, CronTrigger] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    # ─── Table management ──────────────────────────────────

    async def schedule(self, target: TriggerTarget, target_id: str, cron_expression: str) -> bool:
        """Create or replace the trigger for one definition.

        An invalid expression is logged and leaves no trigger behind.

        Returns:
            True if a trigger is now active for the key
        """
        key = trigger_key(target, target_id)
        is_valid, error = validate_cron(cron_expression)

        async with self._lock:
            existing = self._triggers.pop(key, None)
            if existing is not None:
                await existing.stop()

            if not is_valid:
                logger.error("Not scheduling %s: %s", key, error)
                return False

            trigger = CronTrigger(
                key=key,
                target=target,
                target_id=target_id,
                cron_expression=cron_expression,
                callback=self._callbacks[target],
            )
            trigger.start()
            self._triggers[key] = trigger

        logger.info("Scheduled %s with cron '%s'", key, cron_expression)
        return True

    async def unschedule(self, key: str) -> bool:
        """Stop and remove the trigger for ``key``. Missing keys are ignored."""
        async with self._lock:
            trigger = self._triggers.pop(key, None)
            if trigger is None:
                return False
            await trigger.stop()
        logger.info("Unscheduled %s", key)
        return True

    async def schedule_job(self, job) -> bool:
        return await self.schedule(TriggerTarget.JOB, job.id, job.cron_expression)

    async def schedule_workflow(self, workflow) -> bool:
        return await self.schedule(TriggerTarget.WORKFLOW, workflow.id, workflow.cron_expression)

    async def unschedule_job(self, job_id: str) -> bool:
        return await self.unschedule(trigger_key(TriggerTarget.JOB, job_id))

    async def unschedule_workflow(self, workflow_id: str) -> bool:
        return await self.unschedule(trigger_key(TriggerTarget.WORKFLOW, workflow_id))

    def is_scheduled(self, key: str) -> bool:
        trigger = self._triggers.get(key)
        return trigger is not None and trigger.is_running

    def get_trigger(self, key: str) -> Optional[CronTrigger]:
        return self._triggers.get(key)

    # ─── Lifecycle ─────────────────────────────────────────

    async def load_from_db(self, session_factory: async_sessionmaker[AsyncSession]) -> int:
        """Schedule every active job and every active workflow with a cron expression.

        Called at application startup.

        Returns:
            Number of triggers active afterwards
        """
        from services.job_service import JobService
        from services.workflow_service import WorkflowService

        async with session_factory() as session:
            jobs = await JobService(session).get_active_jobs()
            workflows = await WorkflowService(session).get_active_workflows()

        for job in jobs:
            await self.schedule_job(job)
        for workflow in workflows:
            if workflow.cron_expression:
                await self.schedule_workflow(workflow)

        self._initialized = True
        logger.info(
            "Trigger manager initialized: %d trigger(s) from %d job(s) and %d workflow(s)",
            len(self._triggers),
            len(jobs),
            len(workflows),
        )
        return len(self._triggers)

    async def shutdown(self) -> None:
        """Stop every trigger."""
        async with self._lock:
            triggers = list(self._triggers.values())
            self._triggers.clear()
            for trigger in triggers:
                await trigger.stop()
        logger.info("Trigger manager stopped (%d trigger(s))", len(triggers))

    def get_status(self) -> dict[str, Any]:
        """Active triggers and their next fire times."""
        return {
            "initialized": self._initialized,
            "active_triggers": len(self._triggers),
            "triggers": {
                key: {
                    "target": trigger.target.value,
                    "target_id": trigger.target_id,
                    "cron_expression": trigger.cron_expression,
                    "next_run": trigger.next_run.isoformat() if trigger.next_run else None,
                }
                for key, trigger in self._triggers.items()
            },
        }
