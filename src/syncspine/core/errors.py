"""
Structured error types for syncspine.

Provides a typed hierarchy of errors carrying the metadata the resilience
engine needs to decide what to do next: retry with backoff, degrade to the
next storage tier, surface to the caller, or flag a programming mistake.

Manifesto:
    The synchronization layer recovers from most faults on its own. To do
    that safely, every failure has to say what kind of failure it is:

    - **Typed Error Hierarchy:** One class per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry path, scope, tier and key metadata
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         SyncError                                │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError     AuthError            StorageError           │
        │  (retryable=True)   (AUTH)               (STORAGE)              │
        │       │                  │                    │                  │
        │  NetworkError       TokenUnavailableError StorageTierError      │
        │                                                                  │
        │  ParseError         DisposedError        ConfigError            │
        │  (PARSE)            (LIFECYCLE)          (CONFIG)               │
        │       │                                                          │
        │  MalformedMessageError                                           │
        │                                                                  │
        │  StaleUpdateDiscarded (SYNC, informational, never raised)       │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - ``NetworkError``: recovered by the connection manager (backoff reconnect)
    - ``StorageTierError``: logged at warning, the cache degrades to the next tier
    - ``StaleUpdateDiscarded``: logged at debug by the synchronizer
    - ``TokenUnavailableError``: surfaced to the immediate caller
    - ``DisposedError``: surfaced to the caller (stale reference)

Examples:
    >>> error = NetworkError("Channel closed", retry_after=2)
    >>> error.retryable
    True
    >>> error.with_context(scope="chat").context.scope
    'chat'
    >>> describe_error(TokenUnavailableError("expired"))
    'Your authorization to access communication services has expired. Please try again.'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    syncspine, observability
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories are grouped by their typical retry behavior:
    - **Infrastructure (usually transient):** NETWORK, STORAGE
    - **Data errors:** PARSE, SYNC
    - **Never retryable:** AUTH, CONFIG, LIFECYCLE
    - **Internal errors:** INTERNAL, UNKNOWN
    """

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Channel, handshake, send failures
    STORAGE = "STORAGE"           # Cache tier faults

    # Data errors
    PARSE = "PARSE"               # Undecodable inbound messages
    SYNC = "SYNC"                 # Ordering decisions (informational)

    # Never retryable
    AUTH = "AUTH"                 # Credentials
    CONFIG = "CONFIG"             # Invalid settings
    LIFECYCLE = "LIFECYCLE"       # Use after dispose

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover what the synchronization layer knows at the point of
    failure; anything else goes into ``metadata``. ``to_dict()`` serializes
    all non-None fields for logging.

    Attributes:
        component: Component that raised (``cache``, ``tokens``, ``sync``, ``connection``)
        scope: Credential scope
        path: State path
        key: Cache key
        tier: Cache tier name
        origin_id: Originating client id
        metadata: Additional key-value pairs

    Guardrails:
        ❌ DON'T: Store token values in metadata
        ✅ DO: Store scope names and identifiers only
    """

    component: str | None = None
    scope: str | None = None
    path: str | None = None
    key: str | None = None
    tier: str | None = None
    origin_id: str | None = None

    # Additional metadata
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["component", "scope", "path", "key", "tier", "origin_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncError(Exception):
    """
    Base exception for all syncspine errors.

    All SyncError instances carry:
    - **category:** ErrorCategory enum for classification and routing
    - **retryable:** Boolean indicating if operation can be retried
    - **retry_after:** Optional seconds to wait before retry
    - **context:** ErrorContext with structured metadata
    - **cause:** Optional underlying exception for chaining

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = SyncError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageTierError("Quota exceeded").with_context(
                tier="persistent", key="state:presence"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(SyncError):
    """
    Temporary error that may succeed on retry.

    Use when the same operation, attempted again after a delay, has a
    reasonable chance of succeeding.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Channel handshake, send or receive failure. Triggers a backoff reconnect."""

    default_category = ErrorCategory.NETWORK


# =============================================================================
# AUTH ERRORS
# =============================================================================


class AuthError(SyncError):
    """Credential error. Never retried automatically by the caller."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class TokenUnavailableError(AuthError):
    """No valid token exists for a scope and refreshing it failed."""

    pass


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(SyncError):
    """Storage failure."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class StorageTierError(StorageError):
    """A single cache tier failed (quota exceeded, unavailable, corrupt entry).

    The tiered cache logs this at warning level and continues with the next
    tier; it never reaches the caller of ``get``/``set``.
    """

    pass


# =============================================================================
# PARSE ERRORS
# =============================================================================


class ParseError(SyncError):
    """Error parsing inbound data."""

    default_category = ErrorCategory.PARSE
    default_retryable = False


class MalformedMessageError(ParseError):
    """Inbound channel message could not be decoded. Logged and dropped."""

    pass


# =============================================================================
# SYNC (INFORMATIONAL)
# =============================================================================


class StaleUpdateDiscarded(SyncError):
    """An update lost the ordering comparison for its path.

    Informational only: at-least-once delivery makes duplicates and
    retransmits normal. The synchronizer builds one of these for its debug
    log record and never raises it.
    """

    default_category = ErrorCategory.SYNC
    default_retryable = False


# =============================================================================
# LIFECYCLE / CONFIG
# =============================================================================


class DisposedError(SyncError):
    """A public method was called on a disposed component."""

    default_category = ErrorCategory.LIFECYCLE
    default_retryable = False


class ConfigError(SyncError):
    """Invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SyncError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        BrokenPipeError,
        OSError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SyncError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.PARSE
    return ErrorCategory.UNKNOWN


_USER_MESSAGES = {
    ErrorCategory.AUTH: (
        "Your authorization to access communication services has expired. Please try again."
    ),
    ErrorCategory.NETWORK: (
        "The service is currently busy. Please try again in a few minutes."
    ),
}

_NOT_FOUND_MESSAGE = "The requested communication resource could not be found."

_GENERIC_MESSAGE = (
    "An error occurred while processing your request. Our team has been notified."
)


def describe_error(error: Exception) -> str:
    """Map an error to a short message suitable for end users.

    Host applications show connection state (LIVE/STALE) rather than
    transient errors; this is for the failures that do reach a caller.
    """
    if isinstance(error, LookupError):
        return _NOT_FOUND_MESSAGE
    return _USER_MESSAGES.get(categorize_error(error), _GENERIC_MESSAGE)


__all__ = [
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
]
