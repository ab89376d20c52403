"""Cron triggers.

Each CronTrigger owns one asyncio task that sleeps until the next fire time
computed by croniter, then launches the callback as its own task and goes
back to sleep. A slow run never delays the next tick.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from app.config import get_settings
from triggers.base import BaseTrigger, TriggerCallback, TriggerEvent, TriggerTarget

logger = logging.getLogger(__name__)

CRON_FIELDS = 5


def validate_cron(expr: Optional[str]) -> tuple[bool, Optional[str]]:
    """Validate a standard 5-field cron expression.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not expr or not isinstance(expr, str):
        return False, "Missing cron expression"
    parts = expr.strip().split()
    if len(parts) != CRON_FIELDS:
        return False, f"Invalid cron expression (expected {CRON_FIELDS} fields, got {len(parts)})"
    if not croniter.is_valid(expr.strip()):
        return False, f"Invalid cron expression: {expr}"
    return True, None


def compute_next_run(
    expr: str,
    after: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> datetime:
    """Next fire time strictly after ``after``, returned as aware UTC.

    The expression is evaluated in ``tz_name`` (default SCHEDULER_TIMEZONE).
    """
    tz = ZoneInfo(tz_name or get_settings().SCHEDULER_TIMEZONE)
    base = (after or datetime.now(timezone.utc)).astimezone(tz)
    nxt = croniter(expr.strip(), base).get_next(datetime)
    if nxt.tzinfo is None:
        nxt = nxt.replace(tzinfo=tz)
    return nxt.astimezone(timezone.utc)


class CronTrigger(BaseTrigger):
    """Fires ``callback`` on every tick of a cron expression."""

    def __init__(
        self,
        key: str,
        target: TriggerTarget,
        target_id: str,
        cron_expression: str,
        callback: TriggerCallback,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(key, target, target_id, callback)
        self.cron_expression = cron_expression
        self.next_run: Optional[datetime] = None
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"cron-{self.key}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def fire(self, scheduled_for: Optional[datetime] = None) -> asyncio.Task:
        """Launch the callback without waiting for it."""
        event = TriggerEvent(
            key=self.key,
            target=self.target,
            target_id=self.target_id,
            scheduled_for=scheduled_for,
        )
        task = asyncio.create_task(self._run_callback(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_callback(self, event: TriggerEvent) -> None:
        try:
            await self.callback(event)
        except Exception:
            logger.exception("Trigger %s callback raised", self.key)

    async def _loop(self) -> None:
        while True:
            now = datetime.now(timezone.utc)
            # Never schedule at or before the tick that just fired
            after = max(now, self.next_run) if self.next_run else now
            self.next_run = compute_next_run(self.cron_expression, after=after)
            delay = (self.next_run - now).total_seconds()
            await self._sleep(max(delay, 0))
            logger.debug("Trigger %s fired (scheduled for %s)", self.key, self.next_run)
            self.fire(self.next_run)
