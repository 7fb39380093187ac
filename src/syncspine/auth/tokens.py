"""
Token lifecycle management: one valid credential per scope, refreshed early.

Manifesto:
    A real-time channel that reconnects on its own is only useful if it
    never has to stop and ask for a credential. Tokens are refreshed before
    they expire, refreshes are deduplicated, and a failed refresh never
    throws away a token that is still good.

    - **Proactive:** refresh fires at ``expires_at - refresh_skew``
    - **Coalesced:** concurrent callers share one in-flight refresh per scope
    - **Forgiving:** failed refreshes retry on a fixed delay, keeping the current token
    - **Cancellable:** ``dispose()`` cancels every timer and in-flight refresh

Timeline (refresh_skew=5min, retry_delay=30s)::

    t=0        token acquired, expires_at = t+6min
    t=+1min    scheduled refresh fires
                 ├─ ok     → new token, timer rescheduled from its expiry
                 └─ fails  → current token kept, retry at +1.5min
    t=+6min    token no longer returned; get_token() refreshes on demand

Examples:
    >>> async def refresh(scope):
    ...     grant = await identity_client.get_token(scope)
    ...     return {"token": grant.token, "expires_at": grant.expires_on.timestamp()}
    >>> tokens = TokenLifecycleManager(refresh)
    >>> bearer = await tokens.get_credential("chat")

Tags:
    auth, tokens, refresh, coalescing, asyncio, syncspine
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from syncspine.core.backoff import BackoffTracker, ConstantBackoff
from syncspine.core.errors import DisposedError, TokenUnavailableError
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock

logger = get_logger(__name__)


@dataclass(frozen=True)
class Token:
    """A credential for one scope.

    ``value`` is excluded from ``repr`` so tokens never end up in logs.
    """

    scope: str
    value: str = field(repr=False)
    issued_at: float
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def refresh_due(self, skew: float) -> float:
        """Instant at which a refresh should fire.

        Tokens that live shorter than the skew refresh halfway through
        their lifetime instead of immediately.
        """
        lifetime = self.expires_at - self.issued_at
        if lifetime <= skew:
            return self.issued_at + lifetime / 2
        return self.expires_at - skew


@dataclass(frozen=True)
class TokenGrant:
    """What a refresh callback returns: the bearer value and its expiry."""

    token: str = field(repr=False)
    expires_at: float

    @classmethod
    def coerce(cls, raw: TokenGrant | Mapping[str, Any]) -> TokenGrant:
        """Accept a ``TokenGrant`` or a ``{"token", "expires_at"}`` mapping.

        ``expires_at`` may be epoch seconds or a timezone-aware datetime;
        ``expiresAt``/``expiresOn`` are accepted as aliases.
        """
        if isinstance(raw, TokenGrant):
            return raw
        expires = raw.get("expires_at", raw.get("expiresAt", raw.get("expiresOn")))
        if expires is None or "token" not in raw:
            raise ValueError("refresh result must provide 'token' and 'expires_at'")
        if isinstance(expires, datetime):
            expires = expires.timestamp()
        return cls(token=str(raw["token"]), expires_at=float(expires))


RefreshFn = Callable[[str], Awaitable[TokenGrant | Mapping[str, Any]]]


class TokenLifecycleManager:
    """Keeps one valid token per scope using a caller-supplied refresh function.

    Attributes:
        refresh_skew_seconds: Refresh this long before expiry (default 5 min).
        retry_delay_seconds: Fixed delay between failed scheduled refreshes (default 30 s).
        max_refresh_attempts: Stop retrying a scheduled refresh after this many
            consecutive failures (``None`` → keep retrying at the fixed delay).
    """

    def __init__(
        self,
        refresh: RefreshFn,
        *,
        refresh_skew_seconds: float = 300.0,
        retry_delay_seconds: float = 30.0,
        max_refresh_attempts: int | None = None,
        clock: Clock | None = None,
    ):
        self._refresh_fn = refresh
        self.refresh_skew_seconds = refresh_skew_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.max_refresh_attempts = max_refresh_attempts
        self._clock = clock or SystemClock()

        self._tokens: dict[str, Token] = {}
        self._inflight: dict[str, asyncio.Task[Token]] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._next_refresh: dict[str, float] = {}
        self._disposed = False
        self.refresh_count = 0

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def get_token(self, scope: str) -> Token:
        """Return a valid token for ``scope``.

        The cached token is returned while ``now < expires_at``. Otherwise a
        refresh runs (shared with any refresh already in flight).

        Raises:
            TokenUnavailableError: No valid token and the refresh failed.
            DisposedError: The manager has been disposed.
        """
        self._check_alive()
        token = self._tokens.get(scope)
        if token is not None and token.is_valid(self._clock.now()):
            return token

        try:
            return await asyncio.shield(self._start_refresh(scope))
        except asyncio.CancelledError:
            if self._disposed:
                raise DisposedError("TokenLifecycleManager disposed during refresh").with_context(
                    component="tokens", scope=scope
                ) from None
            raise
        except TokenUnavailableError:
            raise
        except Exception as exc:
            raise TokenUnavailableError(
                f"No valid token for scope {scope!r}", cause=exc
            ).with_context(component="tokens", scope=scope) from exc

    async def get_credential(self, scope: str) -> str:
        """Return the bearer value for ``scope`` (see :meth:`get_token`)."""
        token = await self.get_token(scope)
        return token.value

    def current(self, scope: str) -> Token | None:
        """Return the stored token for ``scope`` if still valid, without refreshing."""
        self._check_alive()
        token = self._tokens.get(scope)
        if token is not None and token.is_valid(self._clock.now()):
            return token
        return None

    def set_token(
        self,
        scope: str,
        value: str,
        expires_at: float,
        *,
        issued_at: float | None = None,
    ) -> Token:
        """Seed a token obtained elsewhere (e.g. SSO sign-in) and schedule its refresh."""
        self._check_alive()
        token = Token(
            scope=scope,
            value=value,
            issued_at=issued_at if issued_at is not None else self._clock.now(),
            expires_at=expires_at,
        )
        self._store(token)
        return token

    def invalidate(self, scope: str) -> None:
        """Forget the token for ``scope`` (e.g. after the server rejected it).

        The next :meth:`get_token` refreshes immediately.
        """
        self._check_alive()
        self._tokens.pop(scope, None)
        self._next_refresh.pop(scope, None)
        timer = self._timers.pop(scope, None)
        if timer is not None:
            timer.cancel()

    def next_refresh_at(self, scope: str) -> float | None:
        """Instant of the next scheduled refresh or retry for ``scope``."""
        self._check_alive()
        return self._next_refresh.get(scope)

    def dispose(self) -> None:
        """Cancel all timers and in-flight refreshes.

        Later calls raise :class:`DisposedError`; callers currently awaiting
        a refresh get :class:`DisposedError` too.
        """
        self._disposed = True
        for task in list(self._timers.values()) + list(self._inflight.values()):
            task.cancel()
        self._timers.clear()
        self._inflight.clear()
        self._next_refresh.clear()
        self._tokens.clear()

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    def _start_refresh(self, scope: str) -> asyncio.Task[Token]:
        task = self._inflight.get(scope)
        if task is not None and not task.done():
            return task

        task = asyncio.get_running_loop().create_task(self._do_refresh(scope))
        self._inflight[scope] = task

        def _clear(done: asyncio.Task[Token]) -> None:
            if self._inflight.get(scope) is done:
                del self._inflight[scope]
            # Mark the outcome retrieved; every awaiter sees it through shield().
            if not done.cancelled():
                done.exception()

        task.add_done_callback(_clear)
        return task

    async def _do_refresh(self, scope: str) -> Token:
        self.refresh_count += 1
        grant = TokenGrant.coerce(await self._refresh_fn(scope))
        now = self._clock.now()
        token = Token(scope=scope, value=grant.token, issued_at=now, expires_at=grant.expires_at)
        if not token.is_valid(now):
            raise TokenUnavailableError(
                "Refresh returned an already expired token"
            ).with_context(component="tokens", scope=scope)

        self._store(token)
        logger.info("token_refreshed", scope=scope, expires_at=token.expires_at)
        return token

    def _store(self, token: Token) -> None:
        self._tokens[token.scope] = token
        timer = self._timers.pop(token.scope, None)
        if timer is not None:
            timer.cancel()
        self._timers[token.scope] = asyncio.get_running_loop().create_task(
            self._refresh_loop(token)
        )

    async def _refresh_loop(self, token: Token) -> None:
        scope = token.scope
        due = token.refresh_due(self.refresh_skew_seconds)
        self._next_refresh[scope] = due
        logger.debug("token_refresh_scheduled", scope=scope, due=due)
        await self._clock.sleep(due - self._clock.now())

        retries = BackoffTracker(
            ConstantBackoff(delay=self.retry_delay_seconds, max_retries=self.max_refresh_attempts)
        )
        while not self._disposed:
            try:
                # A successful refresh stores the new token, which cancels
                # this loop and starts the next one.
                await asyncio.shield(self._start_refresh(scope))
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                delay = retries.next_delay()
                if not retries.should_retry(exc):
                    self._next_refresh.pop(scope, None)
                    logger.error(
                        "token_refresh_exhausted", scope=scope, attempts=retries.attempt,
                        error=str(exc),
                    )
                    return
                retry_at = self._clock.now() + delay
                self._next_refresh[scope] = retry_at
                logger.warning(
                    "token_refresh_failed", scope=scope, retry_in=delay,
                    attempt=retries.attempt, error=str(exc),
                )
                await self._clock.sleep(delay)

    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedError("TokenLifecycleManager has been disposed").with_context(
                component="tokens"
            )


__all__ = ["Token", "TokenGrant", "RefreshFn", "TokenLifecycleManager"]
