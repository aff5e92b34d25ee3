"""
Custom exceptions for the crawl job engine with structured error context.

Every exception carries a context dictionary so that failures can be
written to job events and logs without losing the details of where they
happened.

Exception Hierarchy:
    EngineException (base)
    ├── DriverError
    │   ├── PageFetchError
    │   ├── NetworkError / RateLimitError (retryable)
    │   ├── AuthenticationError / ResourceNotFoundError (non-retryable)
    │   ├── CircuitOpenError
    │   └── UnsupportedOperationError
    ├── CheckpointError
    ├── PersistenceError
    │   ├── UpsertError
    │   └── StoreUnavailableError (retryable)
    ├── JobError
    │   ├── JobNotFoundError
    │   ├── InvalidTransitionError
    │   └── JobFatalError
    │       ├── NoDriverError
    │       └── MalformedScopeError
    ├── SubmissionError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class EngineException(Exception):
    """
    Base exception for all engine errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (job, source, url, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        context = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(EngineException):
    """
    Mixin for errors where the same operation may succeed on a later attempt.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Store connection drops or write timeouts
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(EngineException):
    """Mixin for errors that will fail the same way on every attempt."""
    pass


# ============================================================================
# Driver Errors
# ============================================================================

class DriverError(EngineException):
    """
    Base exception for failures inside a source driver.

    Context should include:
        - source: Driver slug
        - url: The URL being fetched (if applicable)
    """
    pass


class PageFetchError(DriverError):
    """One page or branch of a traversal could not be fetched or parsed."""
    pass


class NetworkError(RetryableError, DriverError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, DriverError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, DriverError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, DriverError):
    """Resource not found (HTTP 404). Drivers turn this into a None scrape result."""
    pass


class CircuitOpenError(DriverError):
    """Requests to a source are suspended after repeated failures."""
    pass


class UnsupportedOperationError(NonRetryableError, DriverError):
    """The driver does not implement an optional capability (e.g. search)."""
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(NonRetryableError):
    """
    A stored checkpoint could not be restored for the driver asked to resume it.

    Context should include:
        - expected: Checkpoint variant the driver expects
        - actual: Variant (or raw value) that was supplied
    """
    pass


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistenceError(EngineException):
    """Base exception for record store failures."""
    pass


class UpsertError(PersistenceError):
    """
    A single record could not be created or merged.

    Context should include:
        - source: Source slug
        - record_key: Canonical identity key of the record
    """
    pass


class StoreUnavailableError(RetryableError, PersistenceError):
    """The store timed out or dropped the connection; the tick can be retried."""
    pass


# ============================================================================
# Job Errors
# ============================================================================

class JobError(EngineException):
    """Base exception for job lifecycle failures."""
    pass


class JobNotFoundError(NonRetryableError, JobError):
    """No job of the given kind and id exists."""
    pass


class InvalidTransitionError(NonRetryableError, JobError):
    """
    A status change that would move a job backwards or out of a terminal state.

    Context should include:
        - job_id, from_status, to_status
    """
    pass


class JobFatalError(NonRetryableError, JobError):
    """The job can never make progress; it transitions straight to failed."""
    pass


class NoDriverError(JobFatalError):
    """No registered driver matches the configured source URL or slug."""
    pass


class MalformedScopeError(JobFatalError):
    """The job's scope is empty or names no valid identifiers."""
    pass


# ============================================================================
# Submission Errors
# ============================================================================

class SubmissionError(NonRetryableError):
    """A worker submission does not match the job it names."""
    pass
