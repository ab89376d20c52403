"""
Workflow Execution Engine.

Runs a workflow's steps in ``step_order`` with a single cursor:

- action steps execute through the ActionExecutor and store their
  (JSON-decoded when possible) result in the context
- condition steps evaluate against the context and may jump the cursor to
  the step whose ``step_order`` equals ``on_true_step`` / ``on_false_step``
- the first failure stops the run and marks the execution failed

Every step entry snapshots ``{current_step, context}`` to the execution row
and opens its own ExecutionLog entry. At most one execution per workflow
runs at a time.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from core.constants import (
    LAST_CONDITION_RESULT_KEY,
    LAST_RESULT_KEY,
    STEP_RESULTS_KEY,
    WEBHOOK_PAYLOAD_KEY,
    ExecutionStatus,
    LogStatus,
    StepType,
    TriggerType,
)
from core.exceptions import EngineException, WorkflowAlreadyRunningError
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_step import WorkflowStep
from services.execution_service import ExecutionService
from services.workflow_service import WorkflowService
from tasks.executor import ActionExecutor
from workflow.conditions import evaluate_condition

logger = structlog.get_logger(__name__)


class StepStatus(str, Enum):
    """Outcome of a single step."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class StepResult:
    """Result of executing one step."""

    step_order: int
    status: StepStatus
    output: Optional[str] = None
    error: Optional[str] = None
    jump_to: Optional[int] = None
    duration_ms: float = 0


def decode_result(raw: str) -> Any:
    """JSON-decode an action result, falling back to the raw text."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def initial_context(trigger_type: str, payload: Optional[dict]) -> dict[str, Any]:
    """Empty for manual and cron runs; the payload plus ``_webhookPayload`` for webhooks."""
    if trigger_type == TriggerType.WEBHOOK.value and payload is not None:
        return {**payload, WEBHOOK_PAYLOAD_KEY: payload}
    return {}


def find_step_index(steps: Sequence[WorkflowStep], step_order: Optional[int]) -> Optional[int]:
    """Position of the step with ``step_order``, or None."""
    if step_order is None:
        return None
    for index, step in enumerate(steps):
        if step.step_order == step_order:
            return index
    return None


# ─── Step Executor ─────────────────────────────────────────────

class StepExecutor:
    """Executes a single step against the run context, mutating it in place."""

    def __init__(self, executor: ActionExecutor):
        self._executor = executor

    async def execute_step(self, step: WorkflowStep, context: dict[str, Any]) -> StepResult:
        start = time.monotonic()
        try:
            if step.step_type == StepType.CONDITION.value:
                result = self._execute_condition(step, context)
            else:
                result = await self._execute_action(step, context)
        except EngineException as exc:
            result = StepResult(step.step_order, StepStatus.FAILED, error=exc.message)
        except Exception as exc:
            logger.exception("Step raised unexpectedly", step=step.name)
            result = StepResult(step.step_order, StepStatus.FAILED, error=str(exc) or type(exc).__name__)
        result.duration_ms = (time.monotonic() - start) * 1000
        return result

    def _execute_condition(self, step: WorkflowStep, context: dict[str, Any]) -> StepResult:
        outcome = evaluate_condition(step.condition, context)
        if step.output_variable:
            context[step.output_variable] = outcome
        context[LAST_CONDITION_RESULT_KEY] = outcome

        evaluated_field = (step.condition or {}).get("field")
        return StepResult(
            step.step_order,
            StepStatus.SUCCESS,
            output=json.dumps({"conditionResult": outcome, "evaluatedField": evaluated_field}),
            jump_to=step.on_true_step if outcome else step.on_false_step,
        )

    async def _execute_action(self, step: WorkflowStep, context: dict[str, Any]) -> StepResult:
        if not step.action:
            return StepResult(step.step_order, StepStatus.SUCCESS)

        raw = await self._executor.execute(step.action, context)
        parsed = decode_result(raw)
        if step.output_variable:
            context[step.output_variable] = parsed
        context[LAST_RESULT_KEY] = parsed
        context.setdefault(STEP_RESULTS_KEY, {})[step.name] = parsed
        return StepResult(step.step_order, StepStatus.SUCCESS, output=raw)


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Runs workflows and records every step in the execution ledger.

    Args:
        session_factory: Async session factory; each run uses one session
        executor: Action executor (injectable for tests)
        max_step_visits: Step entries allowed per run before it is failed
            as a probable cycle (default WORKFLOW_MAX_STEP_VISITS)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: Optional[ActionExecutor] = None,
        max_step_visits: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._step_executor = StepExecutor(executor or ActionExecutor())
        self.max_step_visits = max_step_visits or get_settings().WORKFLOW_MAX_STEP_VISITS
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        return lock

    def is_running(self, workflow_id: str) -> bool:
        lock = self._locks.get(workflow_id)
        return lock is not None and lock.locked()

    async def run(
        self,
        workflow_id: str,
        trigger_type: str = TriggerType.MANUAL.value,
        payload: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Run a workflow to completion or first failure.

        Returns:
            The finished WorkflowExecution (completed or failed)

        Raises:
            NotFoundError: Unknown workflow
            WorkflowAlreadyRunningError: The workflow has a running execution
        """
        lock = self._lock_for(workflow_id)
        if lock.locked():
            raise WorkflowAlreadyRunningError()
        try:
            async with lock:
                async with self._session_factory() as session:
                    return await self._run(session, workflow_id, trigger_type, payload)
        finally:
            if not lock.locked() and self._locks.get(workflow_id) is lock:
                del self._locks[workflow_id]

    async def run_by_webhook_token(
        self,
        token: str,
        payload: Optional[dict] = None,
    ) -> Optional[WorkflowExecution]:
        """Run the active workflow owning ``token``; None if there is none."""
        async with self._session_factory() as session:
            workflow = await WorkflowService(session).get_by_webhook_token(token)
        if workflow is None:
            return None
        return await self.run(workflow.id, TriggerType.WEBHOOK.value, payload or {})

    async def _run(
        self,
        session: AsyncSession,
        workflow_id: str,
        trigger_type: str,
        payload: Optional[dict],
    ) -> WorkflowExecution:
        workflow = await WorkflowService(session).get_workflow_with_steps(workflow_id)
        steps = sorted(workflow.steps, key=lambda s: s.step_order)
        ledger = ExecutionService(session)

        context = initial_context(trigger_type, payload)
        execution = await ledger.create_workflow_execution(workflow.id, trigger_type, context)
        await session.commit()

        log = logger.bind(workflow_id=workflow.id, execution_id=execution.id)
        log.info("Workflow run started", workflow=workflow.name, trigger_type=trigger_type, steps=len(steps))

        execution_id = execution.id
        try:
            return await self._run_steps(session, ledger, workflow.name, steps, execution, context, log)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            log.exception("Workflow run crashed", error=error)
            await session.rollback()
            await self._fail_aborted_run(execution_id, context, error)
            raise

    async def _fail_aborted_run(self, execution_id: str, context: dict[str, Any], error: str) -> None:
        async with self._session_factory() as session:
            await ExecutionService(session).fail_execution(execution_id, error, context)
            await session.commit()

    async def _run_steps(
        self,
        session: AsyncSession,
        ledger: ExecutionService,
        workflow_name: str,
        steps: Sequence[WorkflowStep],
        execution: WorkflowExecution,
        context: dict[str, Any],
        log,
    ) -> WorkflowExecution:
        cursor = 0
        visits = 0
        while cursor < len(steps):
            step = steps[cursor]
            visits += 1
            if visits > self.max_step_visits:
                error = (
                    f"Step budget exceeded: {self.max_step_visits} step visits "
                    f"(cycle at step {step.step_order})"
                )
                log.warning("Workflow run aborted", error=error)
                await ledger.finish_workflow_execution(execution, ExecutionStatus.FAILED, context, error)
                await session.commit()
                return execution

            await ledger.snapshot(execution, step.step_order, context)
            entry = await ledger.start_log(
                f"{workflow_name} > {step.name}",
                workflow_execution_id=execution.id,
            )
            await session.commit()

            result = await self._step_executor.execute_step(step, context)

            if result.status == StepStatus.FAILED:
                await ledger.finish_log(entry, LogStatus.FAILURE, error=result.error)
                await ledger.finish_workflow_execution(
                    execution, ExecutionStatus.FAILED, context, result.error
                )
                await session.commit()
                log.warning("Workflow run failed", step=step.name, error=result.error)
                return execution

            await ledger.finish_log(entry, LogStatus.SUCCESS, output=result.output)
            await session.commit()
            log.debug("Step completed", step=step.name, duration_ms=round(result.duration_ms, 2))

            jump = find_step_index(steps, result.jump_to)
            cursor = jump if jump is not None else cursor + 1

        await ledger.finish_workflow_execution(execution, ExecutionStatus.COMPLETED, context)
        await session.commit()
        log.info("Workflow run completed", step_visits=visits)
        return execution
