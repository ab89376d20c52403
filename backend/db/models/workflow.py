"""Workflow model."""

from typing import Optional

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import TriggerType, WorkflowStatus
from db.base import BaseModel


class Workflow(BaseModel):
    """An ordered list of steps run manually, on a cron schedule or by webhook.

    Attributes:
        name: Workflow name, prefixes every step log entry
        status: active or paused
        trigger_type: manual, cron or webhook
        cron_expression: Schedule, only used when set and active
        webhook_token: Secret path segment of the inbound webhook URL
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(default=WorkflowStatus.ACTIVE.value, index=True)
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value)
    cron_expression: Mapped[Optional[str]] = mapped_column(nullable=True)
    webhook_token: Mapped[Optional[str]] = mapped_column(nullable=True, unique=True, index=True)

    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order",
        lazy="selectin",
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE.value
