"""ExecutionLog model: one entry per job run or workflow step."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import LogStatus
from db.base import BaseModel, utcnow


class ExecutionLog(BaseModel):
    """Ledger entry for a job run or a single workflow step.

    Attributes:
        job_id: Set for job runs
        workflow_execution_id: Set for workflow steps
        job_name: Display name ("<workflow> > <step>" for steps)
        status: running, success or failure
        duration: Milliseconds between start_time and end_time
        output / error: Action output or failure message
    """

    __tablename__ = "execution_logs"

    job_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    workflow_execution_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    job_name: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(default=LogStatus.RUNNING.value, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(nullable=True)
    output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
