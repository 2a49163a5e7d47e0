"""
Error taxonomy for dbsandbox.

Lower layers retry only within their own budget and raise one of these
types; the Provisioner is the single place that decides whether a failure
is fatal and triggers compensating cleanup.
"""

from typing import List, Optional, Sequence, Tuple


class ProvisioningError(Exception):
    """Base class for every error raised by dbsandbox."""
    pass


class TransientInfraError(ProvisioningError):
    """Raised when a network or container operation fails in a way worth retrying."""
    pass


class FatalProvisioningError(ProvisioningError):
    """
    Raised when provisioning cannot succeed.

    Attributes:
        cleanup_error: TeardownError collected while cleaning up the partial
            environment, if that cleanup itself failed
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.cleanup_error: Optional["TeardownError"] = None


class RetryExhaustedError(FatalProvisioningError):
    """Raised when a retried operation used up its attempt budget."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempt(s). Last error: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class StartupTimeout(FatalProvisioningError):
    """Raised when a container never satisfies its readiness predicate."""

    def __init__(self, message: str, logs: Sequence[str] = ()):
        super().__init__(message)
        self.logs: List[str] = list(logs)


class ContainerExitedError(FatalProvisioningError):
    """Raised when a container stops before it became ready."""

    def __init__(self, message: str, exit_code: Optional[int] = None, logs: Sequence[str] = ()):
        super().__init__(message)
        self.exit_code = exit_code
        self.logs: List[str] = list(logs)


class MigrationFailure(FatalProvisioningError):
    """Raised when the schema migration could not be applied."""

    def __init__(self, message: str, outcome=None):
        super().__init__(message)
        self.outcome = outcome

    @property
    def logs(self) -> List[str]:
        return list(self.outcome.logs) if self.outcome is not None else []


class ConnectionFailure(FatalProvisioningError):
    """Raised when a live database connection cannot be obtained or was closed."""
    pass


class DeadlineExceeded(FatalProvisioningError):
    """Raised when the caller supplied deadline expires during provisioning."""
    pass


class TeardownError(ProvisioningError):
    """
    Aggregates every failure seen while running a teardown chain.

    Attributes:
        errors: (step name, exception) pairs in the order they happened
    """

    def __init__(self, errors: Sequence[Tuple[str, BaseException]]):
        self.errors: List[Tuple[str, BaseException]] = list(errors)
        details = "; ".join(f"{step}: {error}" for step, error in self.errors)
        super().__init__(f"{len(self.errors)} teardown step(s) failed: {details}")
