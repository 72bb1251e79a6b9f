"""Custom exception hierarchy for MiniBeast configuration and deployments."""


class MiniBeastError(Exception):
    """Base exception for all MiniBeast errors.

    All MiniBeast-specific exceptions inherit from this class, enabling
    centralized exception handling at the HTTP and CLI boundaries.
    """

    pass


class ConfigError(MiniBeastError):
    """Exception raised for server configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(MiniBeastError):
    """Exception raised when request input fails validation.

    Attributes:
        field: The field that failed validation
        message: Description of the validation failure
        expected: Human description of expected value/type
        actual: The actual value that failed validation
    """

    def __init__(
        self,
        field: str,
        message: str,
        expected: str,
        actual: str,
    ) -> None:
        """Initialize ValidationError with detailed information.

        Args:
            field: Field that failed validation (dot notation for nested fields)
            message: Description of what went wrong
            expected: Human-readable description of expected value
            actual: The actual value that failed
        """
        self.field = field
        self.message = message
        self.expected = expected
        self.actual = actual
        full_message = (
            f"Validation error in '{field}': {message}\n"
            f"  Expected: {expected}\n"
            f"  Got: {actual}"
        )
        super().__init__(full_message)


class DeploymentError(MiniBeastError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: The operation that failed (e.g. "ecr-push", "state")
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        super().__init__(message)


class DeploymentNotFoundError(MiniBeastError):
    """Exception raised when a deployment id is unknown to the tracker."""

    def __init__(self, deployment_id: str) -> None:
        """Create a not-found error for a deployment id."""
        self.deployment_id = deployment_id
        self.message = f"Deployment not found: {deployment_id}"
        super().__init__(self.message)


class DeploymentConfigNotFoundError(MiniBeastError):
    """Exception raised when the stored configuration for a deployment is gone.

    Without the original configuration a retry cannot be resumed, so this
    is always surfaced to the operator instead of restarting with defaults.
    """

    def __init__(self, deployment_id: str) -> None:
        """Create a missing-configuration error for a deployment id."""
        self.deployment_id = deployment_id
        self.message = "Cannot retry: original deployment configuration not found"
        super().__init__(self.message)


class RetryNotAllowedError(MiniBeastError):
    """Exception raised when a retry is requested for a non-failed deployment."""

    def __init__(self, deployment_id: str, status: str) -> None:
        """Create a retry error carrying the current deployment status."""
        self.deployment_id = deployment_id
        self.status = status
        self.message = "Deployment is not in failed state"
        super().__init__(f"{self.message} (status: {status})")


class StepOrderError(MiniBeastError):
    """Exception raised when a step would start before its predecessors finish."""

    def __init__(self, step: str, blocking_step: str) -> None:
        """Create an ordering error naming the step that is not yet completed."""
        self.step = step
        self.blocking_step = blocking_step
        self.message = (
            f"Step '{step}' cannot start while '{blocking_step}' is not completed"
        )
        super().__init__(self.message)


class AWSCredentialsError(MiniBeastError):
    """Error raised when supplied AWS credentials are malformed or rejected.

    Attributes:
        code: AWS error code when the failure came from the provider
        message: Human-readable error message
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        """Create a credentials error with an optional provider error code."""
        self.code = code
        self.message = message
        super().__init__(message)
