"""WorkflowStep model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import StepType
from db.base import BaseModel


class WorkflowStep(BaseModel):
    """A single step in a workflow.

    ``step_order`` is both the default execution order and the address
    that ``on_true_step`` / ``on_false_step`` jump to.
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_steps_order"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(default=StepType.ACTION.value)
    action: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    condition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_variable: Mapped[Optional[str]] = mapped_column(nullable=True)
    on_true_step: Mapped[Optional[int]] = mapped_column(nullable=True)
    on_false_step: Mapped[Optional[int]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
