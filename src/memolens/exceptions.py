"""Error taxonomy shared by the cache, queue, workers and orchestrator."""

from __future__ import annotations

__all__ = [
    "MemolensError",
    "TransientProviderError",
    "MalformedPayloadError",
    "UnknownJobTypeError",
    "ProviderResponseError",
    "CacheUnavailableError",
    "QueueUnavailableError",
    "SubtaskTimeoutError",
    "JobFailedError",
    "is_retryable",
]


class MemolensError(Exception):
    """Base class for pipeline specific errors."""


class TransientProviderError(MemolensError):
    """Raised when a provider is temporarily unavailable; the job is retried."""


class MalformedPayloadError(MemolensError):
    """Raised when a job payload cannot be processed; never retried."""


class UnknownJobTypeError(MalformedPayloadError):
    """Raised when no handler is registered for a job type."""


class ProviderResponseError(MemolensError):
    """Raised when a provider answered but the response is unusable."""


class CacheUnavailableError(MemolensError):
    """Raised by the shared cache backend; the two-tier cache swallows it."""


class QueueUnavailableError(MemolensError):
    """Raised when the queue store cannot be reached."""


class SubtaskTimeoutError(MemolensError):
    """Raised when awaiting a job exceeds its deadline."""


class JobFailedError(MemolensError):
    """Raised by ``await_completion`` when a job reached the ``failed`` state."""

    def __init__(self, job_id: str, error: str | None) -> None:
        super().__init__(f"job {job_id} failed: {error or 'unknown error'}")
        self.job_id = job_id
        self.error = error


def is_retryable(exc: BaseException) -> bool:
    """Return whether a handler failure should be retried.

    Terminal errors are the malformed-payload and unusable-response families;
    anything else (including unexpected exceptions) counts as transient so
    that at-least-once delivery gets another attempt.
    """

    return not isinstance(exc, (MalformedPayloadError, ProviderResponseError))
