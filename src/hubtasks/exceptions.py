"""Error taxonomy for the task orchestration layer."""

from __future__ import annotations

__all__ = [
    "AppError",
    "MissingApiKeyError",
    "OrchestrationError",
    "SubmissionError",
    "TransientNetworkError",
    "TerminalValidationError",
    "ProviderBusinessFailure",
    "PollTimeoutError",
    "ResultError",
    "UnrecognizedResultShapeError",
    "UploadError",
    "JobCancelledError",
    "JobNotFoundError",
]


class AppError(Exception):
    """Base class for application specific errors."""


class MissingApiKeyError(AppError):
    """Raised at startup when the provider API key is not configured."""


class OrchestrationError(AppError):
    """Base class for failures raised by orchestration components."""


class SubmissionError(OrchestrationError):
    """Raised when a job could not be submitted to the provider."""


class TransientNetworkError(SubmissionError):
    """Timeout, connection reset or provider 5xx; safe to retry."""

    def __init__(
        self, message: str, *, status_code: int | None = None, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class TerminalValidationError(SubmissionError):
    """Workflow diagnostics or malformed request; retrying will not help."""

    def __init__(self, message: str, *, diagnostics: object | None = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class ProviderBusinessFailure(OrchestrationError):
    """The provider finished the job and reported a failure."""


class PollTimeoutError(OrchestrationError):
    """Polling attempts were exhausted before the job reached a terminal state."""

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(f"job {job_id} did not finish after {attempts} status checks")
        self.job_id = job_id
        self.attempts = attempts


class ResultError(OrchestrationError):
    """Raised when outputs of a succeeded job cannot be fetched."""


class UnrecognizedResultShapeError(ResultError):
    """Raised when the provider output container has an unknown shape."""


class UploadError(OrchestrationError):
    """Raised when an upload fails; the original cause is chained."""


class JobCancelledError(OrchestrationError):
    """Raised when waiting on a job that was cancelled."""


class JobNotFoundError(OrchestrationError, KeyError):
    """Raised when a job id is not present in the registry."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"job '{job_id}' not found")
        self.job_id = job_id

    def __str__(self) -> str:
        return f"job '{self.job_id}' not found"
