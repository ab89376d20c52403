"""Database models.

Importing this package registers every model with the declarative base.
"""

from db.models.job import Job
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.workflow_execution import WorkflowExecution
from db.models.execution_log import ExecutionLog

__all__ = [
    "Job",
    "Workflow",
    "WorkflowStep",
    "WorkflowExecution",
    "ExecutionLog",
]
