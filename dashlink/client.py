from __future__ import annotations

import functools
from typing import Any

import httpx

from auth import session
from auth.token_store import FileTokenStorage, TokenStore

from .batching import BatchHttpLink
from .constants import APP_VERSION, LOGGER
from .env import Settings
from .links import ErrorHandler, SuppressPredicate, build_chain
from .operation import Link, Operation


class DashboardClient:
    def __init__(self, http: httpx.AsyncClient, store: TokenStore, chain: Link) -> None:
        self.http = http
        self.store = store
        self.chain = chain

    async def query(
        self,
        document: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> dict | None:
        operation = Operation(
            query=document,
            variables=variables or {},
            operation_name=operation_name,
        )
        return await self.chain.request(operation)

    async def sign_in(self, username: str, password: str) -> None:
        tokens = await session.sign_in(self.http, username, password)
        self.store.set(tokens)
        LOGGER.info("Signed in as %s", username)

    async def sign_out(self) -> None:
        await session.sign_out(self.http, self.store)

    async def aclose(self) -> None:
        await self.chain.aclose()
        await self.http.aclose()

    async def __aenter__(self) -> "DashboardClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def create_client(
    settings: Settings,
    store: TokenStore | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    on_error: ErrorHandler | None = None,
    suppress: SuppressPredicate | None = None,
) -> DashboardClient:
    if store is None:
        store = TokenStore(FileTokenStorage(settings.token_store_path))

    async def log_request(request: httpx.Request) -> None:
        if not settings.debug:
            return
        LOGGER.info("Backend request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not settings.debug:
            return
        LOGGER.info(
            "Backend response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("Backend error body: %s", text)

    http = httpx.AsyncClient(
        base_url=settings.base_url,
        headers={"User-Agent": f"dashlink/{APP_VERSION}"},
        timeout=settings.timeout,
        transport=transport,
        event_hooks={"request": [log_request], "response": [log_response]},
    )

    batch_link = BatchHttpLink(
        http,
        settings.graphql_path,
        batch_interval=settings.batch_interval,
        batch_max=settings.batch_max,
        batch_max_bytes=settings.batch_max_bytes,
    )
    chain = build_chain(
        store,
        batch_link,
        refresh_fn=functools.partial(session.refresh_tokens, http, settings.graphql_path),
        expiry_threshold=settings.expiry_threshold,
        on_error=on_error,
        suppress=suppress,
    )
    return DashboardClient(http, store, chain)
