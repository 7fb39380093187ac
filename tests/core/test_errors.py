"""Tests for syncspine.core.errors."""

import pytest

from syncspine.core.errors import (
    DisposedError,
    ErrorCategory,
    ErrorContext,
    MalformedMessageError,
    NetworkError,
    StaleUpdateDiscarded,
    StorageTierError,
    SyncError,
    TokenUnavailableError,
    categorize_error,
    describe_error,
    is_retryable,
)


class TestSyncError:
    def test_defaults(self):
        error = SyncError("boom")
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.retry_after is None
        assert error.cause is None

    def test_subclass_categories(self):
        assert NetworkError("x").category is ErrorCategory.NETWORK
        assert NetworkError("x").retryable is True
        assert TokenUnavailableError("x").category is ErrorCategory.AUTH
        assert StorageTierError("x").category is ErrorCategory.STORAGE
        assert MalformedMessageError("x").category is ErrorCategory.PARSE
        assert StaleUpdateDiscarded("x").category is ErrorCategory.SYNC
        assert DisposedError("x").category is ErrorCategory.LIFECYCLE

    def test_explicit_overrides(self):
        error = NetworkError("x", retryable=False, retry_after=5)
        assert error.retryable is False
        assert error.retry_after == 5

    def test_cause_is_chained(self):
        original = ConnectionResetError("reset")
        error = NetworkError("lost", cause=original)
        assert error.__cause__ is original
        assert error.to_dict()["cause"] == "reset"

    def test_with_context_typed_and_extra_fields(self):
        error = StorageTierError("quota").with_context(tier="persistent", key="k", op="set")
        assert error.context.tier == "persistent"
        assert error.context.key == "k"
        assert error.context.metadata == {"op": "set"}

    def test_to_dict(self):
        error = NetworkError("lost", retry_after=2).with_context(component="connection")
        data = error.to_dict()
        assert data["error_type"] == "NetworkError"
        assert data["category"] == "NETWORK"
        assert data["retryable"] is True
        assert data["retry_after"] == 2
        assert data["context"] == {"component": "connection"}

    def test_repr(self):
        assert repr(DisposedError("gone")) == "DisposedError('gone', category=LIFECYCLE)"


class TestErrorContext:
    def test_empty_to_dict(self):
        assert ErrorContext().to_dict() == {}

    def test_skips_none_fields(self):
        ctx = ErrorContext(scope="chat", metadata={"attempt": 3})
        assert ctx.to_dict() == {"scope": "chat", "attempt": 3}


class TestHelpers:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (NetworkError("x"), True),
            (TokenUnavailableError("x"), False),
            (ConnectionRefusedError(), True),
            (ValueError(), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_categorize_builtin_errors(self):
        assert categorize_error(ConnectionResetError()) is ErrorCategory.NETWORK
        assert categorize_error(ValueError()) is ErrorCategory.PARSE
        assert categorize_error(RuntimeError()) is ErrorCategory.UNKNOWN


class TestDescribeError:
    def test_auth(self):
        assert describe_error(TokenUnavailableError("expired")) == (
            "Your authorization to access communication services has expired. Please try again."
        )

    def test_network(self):
        assert describe_error(NetworkError("down")) == (
            "The service is currently busy. Please try again in a few minutes."
        )

    def test_not_found(self):
        assert describe_error(KeyError("thread")) == (
            "The requested communication resource could not be found."
        )

    def test_generic(self):
        message = describe_error(RuntimeError("bug"))
        assert message == (
            "An error occurred while processing your request. Our team has been notified."
        )
        assert describe_error(StorageTierError("quota")) == message
