"""Credential lifecycle: proactive, coalesced token refresh per scope."""

from syncspine.auth.tokens import RefreshFn, Token, TokenGrant, TokenLifecycleManager

__all__ = ["Token", "TokenGrant", "RefreshFn", "TokenLifecycleManager"]
