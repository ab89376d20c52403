"""Tests for the workflow interpreter and the one-running-execution rule."""

import asyncio
import json

import httpx
import pytest
from sqlalchemy.exc import IntegrityError

from core.constants import ExecutionStatus, LogStatus, WorkflowStatus
from core.exceptions import NotFoundError, WorkflowAlreadyRunningError
from db.models.workflow_execution import WorkflowExecution
from services.execution_service import ExecutionService
from services.workflow_service import WorkflowService
from workflow.engine import WorkflowEngine, decode_result, initial_context
from conftest import json_response


def script_step(order, name, code, **extra):
    return {"stepOrder": order, "name": name, "action": {"type": "script", "code": code}, **extra}


def condition_step(order, name, condition=None, **extra):
    return {"stepOrder": order, "name": name, "stepType": "condition", "condition": condition, **extra}


async def make_workflow(session_factory, steps, name="wf", **kwargs):
    async with session_factory() as session:
        workflow = await WorkflowService(session).create_workflow(name=name, steps=steps, **kwargs)
        await session.commit()
        return workflow


async def step_logs(session_factory, execution_id):
    """Step log entries in execution order."""
    async with session_factory() as session:
        logs = await ExecutionService(session).list_logs(workflow_execution_id=execution_id)
    return list(reversed(logs))


@pytest.mark.unit
class TestHelpers:

    def test_decode_result(self):
        assert decode_result('{"id": 42}') == {"id": 42}
        assert decode_result("7") == 7
        assert decode_result("plain text") == "plain text"

    def test_initial_context(self):
        assert initial_context("manual", {"a": 1}) == {}
        assert initial_context("cron", None) == {}
        assert initial_context("webhook", {"a": 1}) == {"a": 1, "_webhookPayload": {"a": 1}}


@pytest.mark.integration
class TestInterpreter:

    async def test_runs_steps_in_order_and_completes(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(2, "second", "return context['first'] + 1", outputVariable="second"),
            script_step(1, "first", "return 1", outputVariable="first"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.error is None
        assert execution.end_time is not None
        assert execution.current_step == 2
        assert execution.context["first"] == 1
        assert execution.context["second"] == 2
        assert execution.context["_stepResults"] == {"first": 1, "second": 2}

        logs = await step_logs(session_factory, execution.id)
        assert [log.job_name for log in logs] == ["wf > first", "wf > second"]
        assert all(log.status == LogStatus.SUCCESS.value for log in logs)
        assert all(log.duration is not None and log.duration >= 0 for log in logs)

    async def test_condition_true_jumps(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(1, "fetch", "return {'ok': True}", outputVariable="r"),
            condition_step(
                2, "check",
                {"field": "r.ok", "operator": "equals", "value": True},
                outputVariable="passed", onTrueStep=3, onFalseStep=4,
            ),
            script_step(3, "yes", "return 'yes'"),
            script_step(4, "no", "return 'no'"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        logs = await step_logs(session_factory, execution.id)
        # No jump after "yes", so "no" still runs next in order
        assert [log.job_name for log in logs] == ["wf > fetch", "wf > check", "wf > yes", "wf > no"]
        assert json.loads(logs[1].output) == {"conditionResult": True, "evaluatedField": "r.ok"}
        assert execution.context["passed"] is True
        assert execution.context["_lastConditionResult"] is True

    async def test_condition_false_skips_ahead(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(1, "fetch", "return {'ok': False}", outputVariable="r"),
            condition_step(2, "check", {"field": "r.ok", "operator": "equals", "value": True}, onTrueStep=3, onFalseStep=4),
            script_step(3, "yes", "return 'yes'"),
            script_step(4, "no", "return 'no'"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        logs = await step_logs(session_factory, execution.id)
        assert [log.job_name for log in logs] == ["wf > fetch", "wf > check", "wf > no"]
        assert execution.context["_lastConditionResult"] is False
        assert execution.context["_lastResult"] == "no"

    async def test_unknown_jump_target_falls_through(self, session_factory):
        workflow = await make_workflow(session_factory, [
            condition_step(1, "check", None, onTrueStep=99),
            script_step(2, "next", "return 2"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        logs = await step_logs(session_factory, execution.id)
        assert [log.job_name for log in logs] == ["wf > check", "wf > next"]
        assert execution.status == ExecutionStatus.COMPLETED.value

    async def test_backward_jump_is_bounded_by_step_budget(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(1, "tick", "return 1"),
            condition_step(2, "again", None, onTrueStep=1),
        ])
        execution = await WorkflowEngine(session_factory, max_step_visits=10).run(workflow.id)

        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.error == "Step budget exceeded: 10 step visits (cycle at step 1)"
        logs = await step_logs(session_factory, execution.id)
        assert len(logs) == 10

    async def test_failure_halts_the_run(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(1, "A", "return {'value': 1}", outputVariable="a"),
            script_step(2, "B", "raise ValueError('nope')"),
            script_step(3, "C", "return 3", outputVariable="c"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.error == "Script error: nope"
        assert execution.current_step == 2
        assert "c" not in execution.context
        assert execution.context["a"] == {"value": 1}
        assert execution.context["_stepResults"] == {"A": {"value": 1}}

        logs = await step_logs(session_factory, execution.id)
        assert [(log.job_name, log.status) for log in logs] == [
            ("wf > A", LogStatus.SUCCESS.value),
            ("wf > B", LogStatus.FAILURE.value),
        ]
        assert logs[1].error == "Script error: nope"

    async def test_output_variable_feeds_later_steps(self, session_factory, executor_for):
        def handler(request):
            if request.url.path == "/items":
                return json_response({"id": 42})
            return httpx.Response(200, text="done")

        executor, transport = executor_for(handler)
        workflow = await make_workflow(session_factory, [
            {"stepOrder": 1, "name": "create", "outputVariable": "firstId",
             "action": {"type": "http_request", "url": "https://api.test/items", "method": "POST", "body": {}}},
            {"stepOrder": 2, "name": "fetch",
             "action": {"type": "http_request", "url": "https://api.test/items/{{firstId.id}}"}},
        ])
        execution = await WorkflowEngine(session_factory, executor=executor).run(workflow.id)

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert str(transport.requests[1].url) == "https://api.test/items/42"
        assert execution.context["firstId"] == {"id": 42}
        assert execution.context["_stepResults"]["create"] == {"id": 42}
        assert execution.context["_lastResult"] == "done"

    async def test_step_without_action_is_a_no_op(self, session_factory):
        workflow = await make_workflow(session_factory, [{"stepOrder": 1, "name": "placeholder"}])
        execution = await WorkflowEngine(session_factory).run(workflow.id)

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context == {}

    async def test_empty_workflow_completes(self, session_factory):
        workflow = await make_workflow(session_factory, [])
        execution = await WorkflowEngine(session_factory).run(workflow.id)
        assert execution.status == ExecutionStatus.COMPLETED.value

    async def test_unknown_workflow(self, session_factory):
        with pytest.raises(NotFoundError):
            await WorkflowEngine(session_factory).run("missing")

    async def test_execution_is_persisted(self, session_factory):
        workflow = await make_workflow(session_factory, [script_step(1, "only", "return 'x'", outputVariable="out")])
        execution = await WorkflowEngine(session_factory).run(workflow.id, "cron")

        async with session_factory() as session:
            stored = await ExecutionService(session).get_workflow_execution(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED.value
        assert stored.trigger_type == "cron"
        assert stored.context["out"] == "x"


    async def test_list_result_elements_feed_later_steps(self, session_factory, executor_for):
        def handler(request):
            if request.url.path == "/users":
                return json_response([{"id": 7, "name": "Ann"}, {"id": 8, "name": "Bo"}])
            return httpx.Response(200, text="ok")

        executor, transport = executor_for(handler)
        workflow = await make_workflow(session_factory, [
            {"stepOrder": 1, "name": "list", "outputVariable": "users",
             "action": {"type": "http_request", "url": "https://api.test/users"}},
            condition_step(2, "first is Ann", {"field": "users.0.name", "operator": "equals", "value": "Ann"},
                           onFalseStep=4),
            {"stepOrder": 3, "name": "fetch",
             "action": {"type": "http_request", "url": "https://api.test/users/{{users.1.id}}"}},
        ])
        execution = await WorkflowEngine(session_factory, executor=executor).run(workflow.id)

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["_lastConditionResult"] is True
        assert str(transport.requests[1].url) == "https://api.test/users/8"

    async def test_ledger_failure_does_not_leave_workflow_running(self, session_factory, monkeypatch):
        workflow = await make_workflow(session_factory, [script_step(1, "only", "return 1", outputVariable="one")])
        engine = WorkflowEngine(session_factory)

        async def broken_finish_log(self, *args, **kwargs):
            raise RuntimeError("disk full")

        with monkeypatch.context() as patch:
            patch.setattr(ExecutionService, "finish_log", broken_finish_log)
            with pytest.raises(RuntimeError, match="disk full"):
                await engine.run(workflow.id)

        async with session_factory() as session:
            ledger = ExecutionService(session)
            [failed] = await ledger.list_workflow_executions(workflow.id)
            assert not await ledger.has_running_execution(workflow.id)
        assert failed.status == ExecutionStatus.FAILED.value
        assert failed.error == "disk full"
        assert failed.end_time is not None
        assert failed.context["one"] == 1

        logs = await step_logs(session_factory, failed.id)
        assert [(log.status, log.error) for log in logs] == [(LogStatus.FAILURE.value, "disk full")]
        assert not engine.is_running(workflow.id)

        execution = await engine.run(workflow.id)
        assert execution.status == ExecutionStatus.COMPLETED.value


@pytest.mark.integration
class TestWebhookRuns:

    async def test_payload_seeds_context(self, session_factory):
        workflow = await make_workflow(session_factory, [
            script_step(1, "echo", "return [context['user'], context['_webhookPayload']['user']]", outputVariable="seen"),
        ])
        execution = await WorkflowEngine(session_factory).run(workflow.id, "webhook", {"user": "ann"})

        assert execution.trigger_type == "webhook"
        assert execution.context["seen"] == ["ann", "ann"]

    async def test_run_by_webhook_token(self, session_factory):
        workflow = await make_workflow(session_factory, [script_step(1, "echo", "return context['n']", outputVariable="n2")])
        async with session_factory() as session:
            token = (await WorkflowService(session).generate_webhook_token(workflow.id))["webhook_token"]
            await session.commit()

        engine = WorkflowEngine(session_factory)
        execution = await engine.run_by_webhook_token(token, {"n": 5})
        assert execution.workflow_id == workflow.id
        assert execution.context["n2"] == 5

        assert await engine.run_by_webhook_token("not-a-token", {}) is None

    async def test_paused_workflow_is_not_run_by_token(self, session_factory):
        workflow = await make_workflow(session_factory, [])
        async with session_factory() as session:
            service = WorkflowService(session)
            token = (await service.generate_webhook_token(workflow.id))["webhook_token"]
            await service.update_workflow(workflow.id, status=WorkflowStatus.PAUSED.value)
            await session.commit()

        assert await WorkflowEngine(session_factory).run_by_webhook_token(token, {}) is None


@pytest.mark.integration
class TestMutualExclusion:

    @pytest.fixture
    def gated_executor(self, executor_for):
        """Executor whose HTTP calls block until ``release`` is set."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            started.set()
            await release.wait()
            return httpx.Response(200, text="ok")

        executor, _ = executor_for(handler)
        return executor, started, release

    async def test_second_run_is_rejected_while_running(self, session_factory, gated_executor):
        executor, started, release = gated_executor
        workflow = await make_workflow(session_factory, [
            {"stepOrder": 1, "name": "slow", "action": {"type": "http_request", "url": "https://api.test/slow"}},
        ])
        engine = WorkflowEngine(session_factory, executor=executor)

        first = asyncio.create_task(engine.run(workflow.id))
        await asyncio.wait_for(started.wait(), timeout=5)
        assert engine.is_running(workflow.id)

        # Same process: the per-workflow lock rejects immediately
        with pytest.raises(WorkflowAlreadyRunningError):
            await engine.run(workflow.id)

        # Another engine sharing only the database: the running row rejects it
        with pytest.raises(WorkflowAlreadyRunningError, match="already running"):
            await WorkflowEngine(session_factory, executor=executor).run(workflow.id)

        release.set()
        execution = await asyncio.wait_for(first, timeout=5)
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert not engine.is_running(workflow.id)

        async with session_factory() as session:
            executions = await ExecutionService(session).list_workflow_executions(workflow.id)
        assert len(executions) == 1

        # Once finished the workflow can run again
        again = await engine.run(workflow.id)
        assert again.status == ExecutionStatus.COMPLETED.value

    async def test_unique_index_allows_one_running_row(self, session_factory):
        workflow = await make_workflow(session_factory, [])

        async with session_factory() as session:
            session.add(WorkflowExecution(workflow_id=workflow.id, status=ExecutionStatus.COMPLETED.value))
            session.add(WorkflowExecution(workflow_id=workflow.id, status=ExecutionStatus.RUNNING.value))
            await session.commit()

        async with session_factory() as session:
            session.add(WorkflowExecution(workflow_id=workflow.id, status=ExecutionStatus.RUNNING.value))
            with pytest.raises(IntegrityError):
                await session.flush()

    async def test_ledger_rejects_second_running_execution(self, db_session):
        workflow = await WorkflowService(db_session).create_workflow(name="wf")
        ledger = ExecutionService(db_session)
        await ledger.create_workflow_execution(workflow.id, "manual", {})
        with pytest.raises(WorkflowAlreadyRunningError):
            await ledger.create_workflow_execution(workflow.id, "manual", {})

    async def test_locks_are_dropped_after_runs(self, session_factory):
        workflow = await make_workflow(session_factory, [])
        engine = WorkflowEngine(session_factory)

        await engine.run(workflow.id)
        with pytest.raises(NotFoundError):
            await engine.run("missing")

        assert engine._locks == {}
