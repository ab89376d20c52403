"""Constants and enums for the execution engine."""

from enum import Enum


class JobStatus(str, Enum):
    """Scheduled job status."""

    ACTIVE = "active"
    PAUSED = "paused"


class WorkflowStatus(str, Enum):
    """Workflow status."""

    ACTIVE = "active"
    PAUSED = "paused"


class TriggerType(str, Enum):
    """How a workflow execution was started."""

    MANUAL = "manual"
    CRON = "cron"
    WEBHOOK = "webhook"


class StepType(str, Enum):
    """Workflow step kind."""

    ACTION = "action"
    CONDITION = "condition"


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogStatus(str, Enum):
    """Execution log entry status."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class ActionType(str, Enum):
    """Action kinds understood by the executor."""

    HTTP_REQUEST = "http_request"
    WEBHOOK = "webhook"
    SCRIPT = "script"


class AuthType(str, Enum):
    """Authentication schemes for HTTP actions."""

    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    API_KEY = "api_key"
    OAUTH2_CLIENT_CREDENTIALS = "oauth2_client_credentials"


class HttpMethod(str, Enum):
    """HTTP methods accepted by http_request actions."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class ConditionOperator(str, Enum):
    """Comparison operators for condition steps."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


# Context keys written by the workflow interpreter
WEBHOOK_PAYLOAD_KEY = "_webhookPayload"
LAST_RESULT_KEY = "_lastResult"
LAST_CONDITION_RESULT_KEY = "_lastConditionResult"
STEP_RESULTS_KEY = "_stepResults"
