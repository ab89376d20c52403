"""FastAPI dependency injection functions."""

import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from triggers.manager import TriggerManager
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)


async def get_db(request: Request) -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise


def get_workflow_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine


def get_trigger_manager(request: Request) -> TriggerManager:
    return request.app.state.trigger_manager
