"""Job model: a cron-scheduled single action."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import JobStatus
from db.base import BaseModel


class Job(BaseModel):
    """A single action fired on a cron schedule.

    Attributes:
        name: Display name, copied into execution logs
        cron_expression: Standard 5-field cron expression
        status: active or paused; only active jobs are scheduled
        action: JSON action definition (http_request, webhook, script)
        last_run / next_run: Bookkeeping written after every run
        depends_on: Id of another job; stored for display, never enforced
        notify_on_failure: Post to notification_webhook when a run fails
        version: Bumped on every update
    """

    __tablename__ = "jobs"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cron_expression: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(default=JobStatus.ACTIVE.value, index=True)
    action: Mapped[dict] = mapped_column(JSON, nullable=False)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    depends_on: Mapped[Optional[str]] = mapped_column(nullable=True)
    notify_on_failure: Mapped[bool] = mapped_column(default=False)
    notification_webhook: Mapped[Optional[str]] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(default=1)

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE.value
