"""Exception types for kryten-analytics."""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base exception for all analytics errors."""

    pass


class DuplicateJobError(AnalyticsError):
    """Raised when a job name is registered twice."""

    def __init__(self, job_name: str) -> None:
        self.job_name = job_name
        super().__init__(f"Job {job_name} already registered")


class JobNotFoundError(AnalyticsError):
    """Raised when a job name is not registered."""

    def __init__(self, job_name: str) -> None:
        self.job_name = job_name
        super().__init__(f"Job {job_name} not found")


class JobExecutionError(AnalyticsError):
    """Raised when a job handler fails. The underlying error is kept as ``cause``."""

    def __init__(self, job_name: str, cause: BaseException) -> None:
        self.job_name = job_name
        self.cause = cause
        super().__init__(str(cause) or cause.__class__.__name__)


class TransactionError(AnalyticsError):
    """Raised when a transaction was rolled back."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class PersistenceUnavailableError(AnalyticsError):
    """Raised when the store cannot be opened at startup."""

    def __init__(self, db_path: str, cause: BaseException | None = None) -> None:
        self.db_path = db_path
        self.cause = cause
        super().__init__(f"Database unavailable: {db_path} ({cause})")
