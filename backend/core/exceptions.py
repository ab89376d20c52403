"""Exception hierarchy for the execution engine."""


class EngineException(Exception):
    """Base exception for the execution engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Human readable message, also stored in logs
            status_code: HTTP status code used by the API layer
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(EngineException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class ValidationError(EngineException):
    """Definition could not be accepted (bad cron, bad action config)."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class ConflictError(EngineException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, 409)


class WorkflowAlreadyRunningError(ConflictError):
    """A workflow already has an execution in the running state."""

    def __init__(
        self,
        message: str = "Workflow is already running. Please wait for the current execution to complete.",
    ):
        super().__init__(message)


class ActionError(EngineException):
    """An action (HTTP call, webhook, script, token exchange) failed."""

    def __init__(self, message: str = "Action failed"):
        super().__init__(message, 502)
