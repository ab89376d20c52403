"""Cronflow - FastAPI Application."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import get_settings
from api.routes import health, webhooks
from core.constants import TriggerType
from core.exceptions import ConflictError
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db import database
from notifications.manager import NotificationManager
from services.execution_service import ExecutionService
from tasks.executor import ActionExecutor
from triggers.base import TriggerEvent
from triggers.manager import TriggerManager
from workflow.engine import WorkflowEngine
from workflow.job_runner import JobRunner

logger = structlog.get_logger(__name__)


async def _run_scheduled_workflow(engine: WorkflowEngine, event: TriggerEvent) -> None:
    """Cron tick for a workflow; a tick that finds the workflow running is skipped."""
    try:
        await engine.run(event.target_id, TriggerType.CRON.value)
    except ConflictError as exc:
        logger.warning("Scheduled workflow run skipped", workflow_id=event.target_id, reason=exc.message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    db_engine: AsyncEngine = app.state.db_engine
    session_factory = app.state.session_factory
    await database.init_db(db_engine)

    # Runs left "running" by a previous process cannot be resumed
    async with session_factory() as session:
        interrupted = await ExecutionService(session).fail_interrupted_executions()
        await session.commit()
    if interrupted:
        logger.warning("Interrupted executions marked failed", count=interrupted)

    notifier: NotificationManager = app.state.notifier
    notifier.configure_from_settings(settings)

    executor: ActionExecutor = app.state.executor
    engine = WorkflowEngine(session_factory, executor=executor)
    runner = JobRunner(session_factory, executor=executor, notifier=notifier)
    scheduler = TriggerManager(
        on_job=lambda event: runner.run_job(event.target_id),
        on_workflow=lambda event: _run_scheduled_workflow(engine, event),
    )
    app.state.workflow_engine = engine
    app.state.job_runner = runner
    app.state.trigger_manager = scheduler

    if settings.SCHEDULER_ENABLED:
        loaded = await scheduler.load_from_db(session_factory)
        logger.info("Scheduler started", triggers=loaded)
    else:
        logger.info("Scheduler disabled")

    logger.info(
        "Application started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    yield

    await scheduler.shutdown()
    await runner.wait_for_notifications()
    await db_engine.dispose()
    logger.info("Application shut down")


def create_app(
    db_engine: Optional[AsyncEngine] = None,
    executor: Optional[ActionExecutor] = None,
    notifier: Optional[NotificationManager] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_engine: Database engine (default: the configured DATABASE_URL engine)
        executor: Action executor shared by workflows and jobs
        notifier: Notification manager for job failure webhooks
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Cron-scheduled jobs and multi-step workflows with an execution ledger.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    db_engine = db_engine or database.engine
    app.state.db_engine = db_engine
    app.state.session_factory = database.create_session_factory(db_engine)
    app.state.executor = executor or ActionExecutor()
    app.state.notifier = notifier or NotificationManager()

    app.add_middleware(RequestTrackingMiddleware)
    setup_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(webhooks.router, prefix=settings.API_PREFIX)

    return app


app = create_app()
