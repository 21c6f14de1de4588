"""Custom exceptions for the workflow orchestration engine."""


class WorkflowEngineError(Exception):
    """Base exception for the workflow orchestration engine."""

    error_code = "workflow_error"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(WorkflowEngineError):
    """Malformed definition or request. Never retried."""

    error_code = "validation_error"

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    error_code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class DuplicateVersionError(WorkflowEngineError):
    """A definition with the same (name, version) already exists."""

    error_code = "duplicate_version"

    def __init__(self, message: str = "Workflow definition version already exists"):
        super().__init__(message, 409)


class DuplicateInstanceError(WorkflowEngineError):
    """An active instance already holds the requested business key."""

    error_code = "duplicate_instance"

    def __init__(self, message: str = "Active workflow instance already exists"):
        super().__init__(message, 409)


class InvalidStateError(WorkflowEngineError):
    """Operation is illegal for the current state machine position."""

    error_code = "invalid_state"

    def __init__(self, message: str = "Invalid state for operation"):
        super().__init__(message, 409)


class NotWaitingError(InvalidStateError):
    """Execution is not waiting for an approval decision."""

    error_code = "not_waiting"

    def __init__(self, message: str = "Step is not waiting for approval"):
        super().__init__(message)


class UnauthorizedError(WorkflowEngineError):
    """Approver does not hold any role allowed to decide the step."""

    error_code = "unauthorized"

    def __init__(self, message: str = "Not authorized to approve this step"):
        super().__init__(message, 403)


class ConcurrencyConflictError(WorkflowEngineError):
    """A compare-and-swap transition lost a race with another writer."""

    error_code = "concurrency_conflict"

    def __init__(self, message: str = "Row was modified concurrently"):
        super().__init__(message, 409)


class DispatchError(WorkflowEngineError):
    """Failure of an AUTOMATIC, SERVICE_CALL or NOTIFICATION step.

    Attributes:
        retryable: Whether the supervisor may retry the step.
    """

    error_code = "dispatch_error"

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message, 502)


class ExpressionError(WorkflowEngineError):
    """A guard or mapping expression could not be evaluated."""

    error_code = "expression_error"

    def __init__(self, message: str = "Expression could not be evaluated"):
        super().__init__(message, 422)
