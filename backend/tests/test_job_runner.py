"""Tests for single-action job runs and failure notifications."""

import json

import httpx
import pytest

from core.constants import LogStatus
from core.exceptions import NotFoundError
from db.base import ensure_aware, utcnow
from notifications.manager import NotificationManager
from services.execution_service import ExecutionService
from services.job_service import JobService
from workflow.job_runner import JobRunner


async def make_job(session_factory, action, **kwargs):
    async with session_factory() as session:
        job = await JobService(session).create_job(
            kwargs.pop("name", "nightly sync"), kwargs.pop("cron_expression", "0 3 * * *"), action, **kwargs
        )
        await session.commit()
        return job


@pytest.mark.integration
class TestJobRunner:

    @pytest.fixture
    def hooks(self, mock_http):
        """HTTP fake: the action endpoint fails with 500 on /fail, everything else answers 200."""

        def handler(request):
            if request.url.path == "/fail":
                return httpx.Response(500, text="upstream down")
            return httpx.Response(200, text="ok")

        return mock_http(handler)

    @pytest.fixture
    def runner(self, session_factory, hooks):
        from tasks.executor import ActionExecutor

        client, _ = hooks
        return JobRunner(
            session_factory,
            executor=ActionExecutor(client=client),
            notifier=NotificationManager(client=client),
        )

    async def test_success_records_log_and_run_times(self, session_factory, runner):
        job = await make_job(session_factory, {"type": "http_request", "url": "https://api.test/ok"})
        before = utcnow()

        entry = await runner.run_job(job.id)

        assert entry.status == LogStatus.SUCCESS.value
        assert entry.output == "ok"
        assert entry.job_name == "nightly sync"
        assert entry.job_id == job.id
        assert entry.end_time is not None

        async with session_factory() as session:
            stored = await JobService(session).get_job(job.id)
        assert ensure_aware(stored.last_run) >= before
        assert ensure_aware(stored.next_run) > ensure_aware(stored.last_run)
        assert stored.version == 1

    async def test_failure_is_recorded_not_raised(self, session_factory, runner, hooks):
        _, transport = hooks
        job = await make_job(session_factory, {"type": "http_request", "url": "https://api.test/fail"})

        entry = await runner.run_job(job.id)
        await runner.wait_for_notifications()

        assert entry.status == LogStatus.FAILURE.value
        assert entry.error == "HTTP 500: upstream down"
        # notifications are off for this job
        assert len(transport.requests) == 1

        async with session_factory() as session:
            logs = await ExecutionService(session).list_logs(job_id=job.id)
            stored = await JobService(session).get_job(job.id)
        assert [log.status for log in logs] == [LogStatus.FAILURE.value]
        assert stored.last_run is not None

    async def test_failure_posts_notification_webhook(self, session_factory, runner, hooks):
        _, transport = hooks
        job = await make_job(
            session_factory,
            {"type": "http_request", "url": "https://api.test/fail"},
            name="billing",
            notify_on_failure=True,
            notification_webhook="https://hooks.test/alerts",
        )

        await runner.run_job(job.id)
        await runner.wait_for_notifications()

        notification = transport.requests[-1]
        assert str(notification.url) == "https://hooks.test/alerts"
        body = json.loads(notification.content)
        assert body["text"] == 'Job "billing" failed: HTTP 500: upstream down'
        assert body["job"] == {"id": job.id, "name": "billing"}
        assert body["error"] == "HTTP 500: upstream down"
        assert "timestamp" in body

    async def test_success_sends_no_notification(self, session_factory, runner, hooks):
        _, transport = hooks
        job = await make_job(
            session_factory,
            {"type": "http_request", "url": "https://api.test/ok"},
            notify_on_failure=True,
            notification_webhook="https://hooks.test/alerts",
        )
        await runner.run_job(job.id)
        await runner.wait_for_notifications()
        assert [str(r.url) for r in transport.requests] == ["https://api.test/ok"]

    async def test_unknown_job(self, runner):
        with pytest.raises(NotFoundError):
            await runner.run_job("missing")


@pytest.mark.unit
class TestNotificationManager:

    async def test_notification_failures_are_swallowed(self, mock_http):
        client, _ = mock_http(lambda r: httpx.Response(500))
        manager = NotificationManager(client=client)

        class Job:
            id = "j1"
            name = "n"
            notify_on_failure = True
            notification_webhook = "https://hooks.test/alerts"

        result = await manager.notify_job_failed(Job(), "boom")
        assert result is not None
        assert not result.success

    async def test_disabled_notifications_send_nothing(self, mock_http):
        client, transport = mock_http(lambda r: httpx.Response(200))
        manager = NotificationManager(client=client)

        class Job:
            id = "j1"
            name = "n"
            notify_on_failure = False
            notification_webhook = "https://hooks.test/alerts"

        assert await manager.notify_job_failed(Job(), "boom") is None
        assert transport.requests == []

    async def test_email_without_smtp_fails_cleanly(self):
        from notifications.channels import EmailChannel

        manager = NotificationManager()
        manager.register_channel(EmailChannel({}))
        result = await manager.send_email("ops@example.com", "Subject", "<p>x</p>")
        assert not result.success
        assert result.error == "SMTP is not configured"

    async def test_unconfigured_channel(self):
        result = await NotificationManager().send_email("ops@example.com", "s", "h")
        assert not result.success
        assert "not configured" in result.error
