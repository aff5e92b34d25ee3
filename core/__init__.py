"""
Core utilities and configuration for the crawl job engine.

Modules:
    config: Application settings and configured source drivers
    database: Async engine and session factories
    exceptions: Exception hierarchy shared by drivers, store and coordinator
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import NoDriverError, PageFetchError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "DriverConfig",
    "async_session_maker",
    "build_engine",
    "build_session_maker",
    "setup_logging",
    # Exceptions
    "EngineException",
    "RetryableError",
    "NonRetryableError",
    "DriverError",
    "PageFetchError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "CircuitOpenError",
    "UnsupportedOperationError",
    "CheckpointError",
    "PersistenceError",
    "UpsertError",
    "StoreUnavailableError",
    "JobError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "JobFatalError",
    "NoDriverError",
    "MalformedScopeError",
    "SubmissionError",
]
