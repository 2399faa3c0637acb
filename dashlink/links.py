from __future__ import annotations

import logging
from typing import Callable

import httpx

from auth.interceptor import AuthLink, RefreshFn
from auth.token_store import TokenStore

from .batching import BatchHttpLink
from .constants import DEFAULT_EXPIRY_THRESHOLD_SECONDS, LOGGER
from .errors import ClassifiedError, UnauthorizedError
from .operation import Link, Operation

ErrorHandler = Callable[[ClassifiedError, Operation], None]
SuppressPredicate = Callable[[ClassifiedError, Operation], bool]


class ErrorLink(Link):
    """Reacts to classified errors coming back through the chain.

    Reports each error to ``on_error`` and rethrows, unless ``suppress``
    claims the error, in which case the caller receives ``None``. An
    ``UnauthorizedError`` drops the access token only when the rejected
    exchange carried the token that is still current.
    """

    def __init__(
        self,
        next_link: Link,
        store: TokenStore,
        *,
        on_error: ErrorHandler | None = None,
        suppress: SuppressPredicate | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._next = next_link
        self._store = store
        self._on_error = on_error
        self._suppress = suppress
        self._logger = logger or LOGGER

    async def request(self, operation: Operation) -> dict | None:
        try:
            return await self._next.request(operation)
        except ClassifiedError as error:
            self._handle(error, operation)
            if self._suppress is not None and self._suppress(error, operation):
                self._logger.info(
                    "Suppressed %s for operation %s", type(error).__name__, operation.operation_name
                )
                return None
            raise

    def _handle(self, error: ClassifiedError, operation: Operation) -> None:
        self._logger.warning(
            "Operation %s failed with %s (status=%s url=%s): %s",
            operation.operation_name,
            type(error).__name__,
            error.status_code,
            error.url,
            error,
        )

        if self._on_error is not None:
            try:
                self._on_error(error, operation)
            except Exception:
                self._logger.exception("Error reporter failed for %s", type(error).__name__)

        if isinstance(error, UnauthorizedError):
            current = self._store.get().access_token
            sent = _sent_access_token(error)
            if current and sent == current:
                self._logger.info("Invalidating access token after unauthorized response")
                self._store.invalidate()
            elif current:
                self._logger.info("Ignoring unauthorized response for a token no longer in use")

    async def aclose(self) -> None:
        await self._next.aclose()


def _sent_access_token(error: ClassifiedError) -> str | None:
    if not isinstance(error.original, httpx.Response):
        return None
    try:
        authorization = error.original.request.headers.get("Authorization", "")
    except RuntimeError:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def build_chain(
    store: TokenStore,
    transport: Link,
    *,
    refresh_fn: RefreshFn,
    expiry_threshold: float = DEFAULT_EXPIRY_THRESHOLD_SECONDS,
    on_error: ErrorHandler | None = None,
    suppress: SuppressPredicate | None = None,
    logger: logging.Logger | None = None,
) -> ErrorLink:
    """Compose auth -> transport, with errors flowing back out through ErrorLink."""
    auth_link = AuthLink(
        transport,
        store,
        refresh_fn=refresh_fn,
        expiry_threshold=expiry_threshold,
        logger=logger,
    )
    if isinstance(transport, BatchHttpLink) and transport.authorize is None:
        transport.authorize = auth_link.reauthorize
    return ErrorLink(auth_link, store, on_error=on_error, suppress=suppress, logger=logger)
