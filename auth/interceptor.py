from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from auth.models import RefreshState, TokenSet
from auth.token_store import TokenStore
from dashlink.constants import DEFAULT_EXPIRY_THRESHOLD_SECONDS, LOGGER
from dashlink.errors import AuthenticationError
from dashlink.operation import Link, Operation

RefreshFn = Callable[..., Awaitable[TokenSet]]


class AuthLink(Link):
    """Attaches the bearer token, refreshing it ahead of expiry.

    A token is refreshed once ``now + expiry_threshold`` reaches its expiry.
    Only one refresh runs at a time; callers arriving meanwhile wait on it.
    A failed refresh clears the store, and nothing is retried until the next
    sign-in puts a refresh token back.
    """

    def __init__(
        self,
        next_link: Link,
        store: TokenStore,
        *,
        refresh_fn: RefreshFn,
        expiry_threshold: float = DEFAULT_EXPIRY_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._next = next_link
        self._store = store
        self._refresh_fn = refresh_fn
        self._expiry_threshold = expiry_threshold
        self._clock = clock
        self._logger = logger or LOGGER
        self._refreshing: asyncio.Task | None = None

    @property
    def state(self) -> RefreshState:
        if self._refreshing is not None:
            return RefreshState.REFRESHING
        return self._state_for(self._store.get())

    def _state_for(self, tokens: TokenSet) -> RefreshState:
        if not tokens.refresh_token:
            if tokens.access_token and not self._near_expiry(tokens):
                return RefreshState.VALID
            return RefreshState.INVALID
        if not tokens.access_token or self._near_expiry(tokens):
            return RefreshState.NEAR_EXPIRY
        return RefreshState.VALID

    def _near_expiry(self, tokens: TokenSet) -> bool:
        return tokens.expires_at is None or (
            self._clock() + self._expiry_threshold >= tokens.expires_at
        )

    async def request(self, operation: Operation) -> dict | None:
        return await self._next.request(await self.attach(operation))

    async def attach(self, operation: Operation) -> Operation:
        tokens = await self._current_tokens()
        return operation.with_header("Authorization", f"Bearer {tokens.access_token}")

    async def reauthorize(self, headers: dict[str, str]) -> dict[str, str]:
        """Replace a bearer header with the token that is current right now."""
        if "Authorization" not in headers:
            return headers
        tokens = await self._current_tokens()
        return {**headers, "Authorization": f"Bearer {tokens.access_token}"}

    async def _current_tokens(self) -> TokenSet:
        state = self.state
        if state is RefreshState.VALID:
            return self._store.get()
        if state is RefreshState.INVALID:
            raise AuthenticationError("No valid session; sign in required.")

        tokens = await self._refresh()
        if tokens.is_expired(self._clock()):
            raise AuthenticationError("Refreshed access token is already expired.")
        return tokens

    def _refresh(self) -> Awaitable[TokenSet]:
        if self._refreshing is None:
            self._logger.info("Access token near expiry; refreshing")
            task = asyncio.get_running_loop().create_task(
                self._run_refresh(self._store.get())
            )
            task.add_done_callback(self._refresh_done)
            self._refreshing = task
        # Shielded so one waiter's cancellation leaves the refresh running.
        return asyncio.shield(self._refreshing)

    def _refresh_done(self, task: asyncio.Task) -> None:
        if self._refreshing is task:
            self._refreshing = None
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self, tokens: TokenSet) -> TokenSet:
        not_before = self._clock() + self._expiry_threshold
        try:
            refreshed = await self._refresh_fn(tokens, not_before=not_before)
        except Exception as error:
            if self._store.get().refresh_token == tokens.refresh_token:
                self._logger.warning("Token refresh failed; clearing session: %s", error)
                self._store.clear()
            else:
                self._logger.warning("Token refresh failed after the session changed: %s", error)
            raise AuthenticationError(f"Token refresh failed: {error}", original=error) from error

        if self._store.get().refresh_token != tokens.refresh_token:
            raise AuthenticationError("Session changed while refreshing; sign in required.")

        self._store.set(refreshed)
        return refreshed

    async def aclose(self) -> None:
        await self._next.aclose()
