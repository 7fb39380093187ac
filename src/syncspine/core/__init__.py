"""syncspine core -- errors, logging, settings, clock and backoff primitives.

Modules
-------
errors      SyncError hierarchy, ErrorCategory, describe_error
logging     structlog configuration and context binding
settings    SyncSettings (pydantic-settings, SYNCSPINE_* env vars)
timestamps  Clock protocol, SystemClock, millisecond helpers
backoff     ExponentialBackoff / ConstantBackoff / BackoffTracker
"""

from syncspine.core.backoff import BackoffTracker, ConstantBackoff, ExponentialBackoff, RetryStrategy
from syncspine.core.errors import (
    AuthError,
    ConfigError,
    DisposedError,
    ErrorCategory,
    ErrorContext,
    MalformedMessageError,
    NetworkError,
    ParseError,
    StaleUpdateDiscarded,
    StorageError,
    StorageTierError,
    SyncError,
    TokenUnavailableError,
    TransientError,
    categorize_error,
    describe_error,
    is_retryable,
)
from syncspine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from syncspine.core.settings import SyncSettings
from syncspine.core.timestamps import Clock, SystemClock, from_millis, to_millis, utc_now

__all__ = [
    # errors
    "ErrorCategory",
    "ErrorContext",
    "SyncError",
    "TransientError",
    "NetworkError",
    "AuthError",
    "TokenUnavailableError",
    "StorageError",
    "StorageTierError",
    "ParseError",
    "MalformedMessageError",
    "StaleUpdateDiscarded",
    "DisposedError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
    "describe_error",
    # logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # settings
    "SyncSettings",
    # time
    "Clock",
    "SystemClock",
    "utc_now",
    "to_millis",
    "from_millis",
    # backoff
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "BackoffTracker",
]
