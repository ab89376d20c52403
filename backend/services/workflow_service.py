"""Workflow service: CRUD for workflows and their steps, plus webhook tokens."""

import logging
import secrets
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import TriggerType, WorkflowStatus
from core.exceptions import NotFoundError, ValidationError
from core.schemas import parse_steps
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService
from triggers.handlers.schedule import validate_cron

logger = logging.getLogger(__name__)

WEBHOOK_TOKEN_BYTES = 32


class WorkflowService(BaseService[Workflow]):
    """Service for workflow definitions.

    Args:
        db: Session; the caller commits
        scheduler: Optional TriggerManager notified of schedule changes
    """

    def __init__(self, db: AsyncSession, scheduler=None):
        super().__init__(Workflow, db)
        self.scheduler = scheduler

    @staticmethod
    def _validate(status: str, trigger_type: str, cron_expression: Optional[str]) -> None:
        if status not in {s.value for s in WorkflowStatus}:
            raise ValidationError(f"Invalid workflow status: {status}")
        if trigger_type not in {t.value for t in TriggerType}:
            raise ValidationError(f"Invalid trigger type: {trigger_type}")
        if cron_expression:
            is_valid, error = validate_cron(cron_expression)
            if not is_valid:
                raise ValidationError(error)

    @staticmethod
    def _build_steps(steps: list[Any]) -> list[WorkflowStep]:
        return [WorkflowStep(**step.to_columns()) for step in parse_steps(steps)]

    # ─── Read ──────────────────────────────────────────────

    async def get_workflow_with_steps(self, workflow_id: str) -> Workflow:
        """Workflow with its steps loaded in ``step_order``."""
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.id == workflow_id)
            .execution_options(populate_existing=True)
        )
        workflow = result.scalar_one_or_none()
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def get_active_workflows(self) -> Sequence[Workflow]:
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.status == WorkflowStatus.ACTIVE.value)
            .order_by(Workflow.created_at)
        )
        return result.scalars().all()

    async def get_by_webhook_token(self, token: str, active_only: bool = True) -> Optional[Workflow]:
        query = select(Workflow).where(Workflow.webhook_token == token)
        if active_only:
            query = query.where(Workflow.status == WorkflowStatus.ACTIVE.value)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    # ─── Write ─────────────────────────────────────────────

    async def create_workflow(
        self,
        name: str,
        steps: Optional[list[Any]] = None,
        description: Optional[str] = None,
        status: str = WorkflowStatus.ACTIVE.value,
        trigger_type: str = TriggerType.MANUAL.value,
        cron_expression: Optional[str] = None,
    ) -> Workflow:
        """Create a workflow with its steps; schedule it if active with a cron."""
        self._validate(status, trigger_type, cron_expression)
        workflow = Workflow(
            name=name,
            description=description,
            status=status,
            trigger_type=trigger_type,
            cron_expression=cron_expression,
            steps=self._build_steps(steps or []),
        )
        self.db.add(workflow)
        await self.db.flush()
        await self.db.refresh(workflow)
        logger.info("Workflow created: %s (%s, %d steps)", workflow.name, workflow.id, len(workflow.steps))

        await self._sync_schedule(workflow)
        return workflow

    async def update_workflow(
        self,
        workflow_id: str,
        steps: Optional[list[Any]] = None,
        **changes: Any,
    ) -> Workflow:
        """Apply ``changes``; ``steps``, when given, replaces every step."""
        workflow = await self.get_workflow_with_steps(workflow_id)
        self._validate(
            changes.get("status", workflow.status),
            changes.get("trigger_type", workflow.trigger_type),
            changes.get("cron_expression", workflow.cron_expression),
        )

        for key, value in changes.items():
            if hasattr(workflow, key):
                setattr(workflow, key, value)

        if steps is not None:
            new_steps = self._build_steps(steps)
            workflow.steps.clear()
            await self.db.flush()
            workflow.steps.extend(new_steps)

        await self.db.flush()
        await self.db.refresh(workflow)
        logger.info("Workflow updated: %s", workflow.id)

        await self._sync_schedule(workflow)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        if self.scheduler:
            await self.scheduler.unschedule_workflow(workflow_id)
        deleted = await self.delete(workflow_id)
        if deleted:
            logger.info("Workflow deleted: %s", workflow_id)
        return deleted

    async def _sync_schedule(self, workflow: Workflow) -> None:
        if not self.scheduler:
            return
        if workflow.is_active and workflow.cron_expression:
            await self.scheduler.schedule_workflow(workflow)
        else:
            await self.scheduler.unschedule_workflow(workflow.id)

    # ─── Webhook tokens ────────────────────────────────────

    async def generate_webhook_token(self, workflow_id: str) -> dict[str, str]:
        """Issue a fresh inbound webhook token; any previous token stops working."""
        workflow = await self.get_workflow_with_steps(workflow_id)
        token = secrets.token_hex(WEBHOOK_TOKEN_BYTES)
        workflow.webhook_token = token
        workflow.trigger_type = TriggerType.WEBHOOK.value
        await self.db.flush()
        logger.info("Webhook token generated for workflow %s", workflow_id)
        return {
            "webhook_token": token,
            "webhook_url": f"{get_settings().WEBHOOK_BASE_PATH}/{token}",
        }

    async def revoke_webhook_token(self, workflow_id: str) -> Workflow:
        workflow = await self.get_workflow_with_steps(workflow_id)
        workflow.webhook_token = None
        workflow.trigger_type = TriggerType.MANUAL.value
        await self.db.flush()
        logger.info("Webhook token revoked for workflow %s", workflow_id)
        return workflow
