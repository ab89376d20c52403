"""WorkflowExecution model: one run of a workflow."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, TriggerType
from db.base import BaseModel, utcnow


class WorkflowExecution(BaseModel):
    """A workflow run and its context snapshot.

    A partial unique index allows at most one ``running`` row per workflow.
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index(
            "uq_workflow_executions_one_running",
            "workflow_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=ExecutionStatus.RUNNING.value, index=True)
    current_step: Mapped[int] = mapped_column(default=0)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
