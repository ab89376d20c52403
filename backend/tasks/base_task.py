"""
Base interface for action implementations.

Every action type (HTTP request, webhook, script) inherits from BaseAction
and implements execute(). The executor calls run(), which adds timing and
structured logging and folds failures into an ActionResult.
"""

import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import EngineException

logger = structlog.get_logger(__name__)


class ActionResult:
    """Outcome of a single action run."""

    def __init__(
        self,
        success: bool,
        output: Optional[str] = None,
        error: Optional[str] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.duration_ms = duration_ms


class BaseAction(ABC):
    """
    Abstract base class for action implementations.

    Subclasses set ``action_type`` and implement ``execute()``, which
    returns the textual output or raises ActionError.
    """

    action_type: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract base action"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.timeout = timeout if timeout is not None else get_settings().ACTION_TIMEOUT_SECONDS

    @asynccontextmanager
    async def http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a short-lived one owned by this call."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    @abstractmethod
    async def execute(self, action: Any, context: Dict[str, Any]) -> str:
        """
        Perform the action.

        Args:
            action: Typed action configuration
            context: Execution context used for placeholder resolution

        Returns:
            Textual output of the action
        """
        pass

    async def run(self, action: Any, context: Optional[Dict[str, Any]] = None) -> ActionResult:
        """Run the action with timing and error capture."""
        start = time.monotonic()
        logger.info(
            "Action starting",
            action_type=self.action_type,
            action_name=self.display_name,
        )
        try:
            output = await self.execute(action, context or {})
        except EngineException as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Action failed",
                action_type=self.action_type,
                error=e.message,
                duration_ms=round(duration_ms, 2),
            )
            return ActionResult(success=False, error=e.message, duration_ms=duration_ms)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Action completed",
            action_type=self.action_type,
            duration_ms=round(duration_ms, 2),
        )
        return ActionResult(success=True, output=output, duration_ms=duration_ms)
