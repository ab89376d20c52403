"""Base trigger classes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional


class TriggerTarget(str, Enum):
    """What a trigger starts when it fires."""

    JOB = "job"
    WORKFLOW = "workflow"


def trigger_key(target: TriggerTarget, target_id: str) -> str:
    """Scheduler table key, e.g. ``job:<id>`` or ``workflow:<id>``."""
    return f"{target.value}:{target_id}"


@dataclass
class TriggerEvent:
    """A single trigger firing, handed to the trigger's callback."""

    key: str
    target: TriggerTarget
    target_id: str
    scheduled_for: Optional[datetime] = None
    fired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TriggerCallback = Callable[[TriggerEvent], Awaitable[object]]


class BaseTrigger(ABC):
    """A running source of TriggerEvents.

    The TriggerManager owns instances and starts/stops them as
    definitions are created, updated and deleted.
    """

    def __init__(self, key: str, target: TriggerTarget, target_id: str, callback: TriggerCallback):
        self.key = key
        self.target = target
        self.target_id = target_id
        self.callback = callback

    @abstractmethod
    def start(self) -> None:
        """Begin producing events."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing events. Runs already in flight are left alone."""
        ...

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...
