"""
Error taxonomy for the generation pipeline.

  ValidationError         — bad input, never retried, raised before any job exists
  TransientProviderError  — timeout / rate limit / 5xx, retried with backoff
  PermanentProviderError  — 4xx / malformed response, never retried
  CoalescedFailure        — a caller attached to someone else's job saw it fail
  FatalError              — configuration or programming error
"""

from typing import Optional

import httpx

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    kind = "PipelineError"


class ValidationError(PipelineError):
    kind = "ValidationError"

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations) or "Invalid request")


class ProviderError(PipelineError):
    kind = "ProviderError"

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class TransientProviderError(ProviderError):
    kind = "TransientProviderError"


class PermanentProviderError(ProviderError):
    kind = "PermanentProviderError"


class RetryExhaustedError(PipelineError):
    """All attempts failed with transient errors."""

    kind = "TransientProviderError"

    def __init__(self, attempts: int, last_error: ProviderError, label: str = ""):
        self.attempts = attempts
        self.last_error = last_error
        self.label = label
        super().__init__(
            f"{label or 'operation'} failed after {attempts} attempt(s): {last_error}"
        )


class FatalError(PipelineError):
    kind = "Fatal"


class ConfigurationError(FatalError):
    pass


class JobNotFoundError(PipelineError):
    kind = "NotFound"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobFailedError(PipelineError):
    """A synchronous entry point observed its job end in `failed`."""

    kind = "JobFailed"

    def __init__(self, job):
        self.job = job
        error = job.error
        detail = f"{error.kind} in {error.stage} stage: {error.message}" if error else "unknown error"
        super().__init__(f"Job {job.id} failed: {detail}")


class CoalescedFailure(JobFailedError):
    kind = "CoalescedFailure"


def classify_http_error(exc: Exception, provider: str) -> ProviderError:
    """Map an httpx exception onto the transient / permanent split."""
    if isinstance(exc, httpx.TimeoutException):
        return TransientProviderError(f"{provider} request timeout", provider)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        retry_after = exc.response.headers.get("Retry-After")
        delay = float(retry_after) if retry_after and retry_after.isdigit() else None
        if status in RETRYABLE_STATUS_CODES:
            return TransientProviderError(
                f"{provider} returned {status}", provider, status, delay
            )
        return PermanentProviderError(
            f"{provider} rejected the request ({status}): {exc.response.text[:200]}",
            provider,
            status,
        )

    if isinstance(exc, httpx.TransportError):
        return TransientProviderError(f"{provider} unreachable: {exc}", provider)

    return PermanentProviderError(f"{provider} error: {exc}", provider)
