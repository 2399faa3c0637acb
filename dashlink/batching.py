from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from .constants import (
    DEFAULT_BATCH_INTERVAL_MS,
    DEFAULT_BATCH_MAX,
    DEFAULT_GRAPHQL_PATH,
    LOGGER,
)
from .errors import NetworkError, classify
from .operation import Link, Operation

HeaderHook = Callable[[dict[str, str]], Awaitable[dict[str, str]]]


@dataclass
class PendingRequest:
    operation: Operation
    future: asyncio.Future
    enqueued_at: float
    body: bytes = b""

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass
class _OpenBatch:
    entries: list[PendingRequest] = field(default_factory=list)
    size: int = 0
    timer: asyncio.TimerHandle | None = None


class BatchHttpLink(Link):
    """Terminating link that coalesces operations into batched POSTs.

    Operations arriving within ``batch_interval`` seconds of the first queued
    one share a single exchange, up to ``batch_max`` operations. Operations with
    different headers never share a batch. When ``authorize`` is set it is
    awaited with the batch headers right before the POST, so credentials that
    changed while the batch was open are replaced before it leaves.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str = DEFAULT_GRAPHQL_PATH,
        *,
        batch_interval: float = DEFAULT_BATCH_INTERVAL_MS / 1000,
        batch_max: int = DEFAULT_BATCH_MAX,
        batch_max_bytes: int | None = None,
        authorize: HeaderHook | None = None,
        clock=time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._endpoint = endpoint
        self._batch_interval = max(0.0, batch_interval)
        self._batch_max = max(1, batch_max)
        self._batch_max_bytes = batch_max_bytes
        self.authorize = authorize
        self._clock = clock
        self._logger = logger or LOGGER
        self._open: dict[str, _OpenBatch] = {}
        self._inflight: set[asyncio.Task] = set()

    async def request(self, operation: Operation) -> dict:
        # Encoding errors belong to this caller alone, never to its batch.
        body = json.dumps(operation.to_payload()).encode("utf-8")

        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            operation=operation,
            future=loop.create_future(),
            enqueued_at=self._clock(),
            body=body,
        )
        self._enqueue(pending)
        return await pending.future

    def _enqueue(self, pending: PendingRequest) -> None:
        key = self._batch_key(pending.operation)
        batch = self._open.get(key)

        if (
            batch is not None
            and self._batch_max_bytes is not None
            and batch.size + pending.size > self._batch_max_bytes
        ):
            self._flush(key)
            batch = None

        if batch is None:
            batch = self._open[key] = _OpenBatch()

        batch.entries.append(pending)
        batch.size += pending.size

        oversized = self._batch_max_bytes is not None and pending.size >= self._batch_max_bytes
        if len(batch.entries) >= self._batch_max or oversized:
            self._flush(key)
        elif batch.timer is None:
            loop = asyncio.get_running_loop()
            batch.timer = loop.call_later(self._batch_interval, self._flush, key)

    def _flush(self, key: str) -> None:
        batch = self._open.pop(key, None)
        if batch is None:
            return
        if batch.timer is not None:
            batch.timer.cancel()
        if not batch.entries:
            return

        task = asyncio.get_running_loop().create_task(self._dispatch(batch.entries))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, entries: list[PendingRequest]) -> None:
        headers = entries[0].operation.headers
        if self.authorize is not None:
            try:
                headers = await self.authorize(headers)
            except Exception as error:
                self._reject_all(entries, error)
                return

        headers["Content-Type"] = "application/json"
        content = b"[" + b",".join(entry.body for entry in entries) + b"]"
        self._logger.debug(
            "Dispatching batch of %s operation(s) to %s (open %.1f ms)",
            len(entries),
            self._endpoint,
            (self._clock() - entries[0].enqueued_at) * 1000,
        )

        try:
            response = await self._client.post(self._endpoint, content=content, headers=headers)
        except Exception as error:
            self._reject_all(entries, classify(error))
            return

        error = classify(response)
        if error is not None:
            self._reject_all(entries, error)
            return

        try:
            results = self._parse_results(response, len(entries))
        except NetworkError as parse_error:
            self._reject_all(entries, parse_error)
            return

        for entry, result in zip(entries, results):
            if not entry.future.done():
                entry.future.set_result(result)

    def _parse_results(self, response: httpx.Response, expected: int) -> list[dict]:
        url = str(response.request.url)
        try:
            results = response.json()
        except ValueError as error:
            raise NetworkError(
                f"Could not parse batch response: {error}",
                original=response,
                status_code=response.status_code,
                url=url,
            ) from error

        if not isinstance(results, list) or len(results) != expected:
            received = len(results) if isinstance(results, list) else type(results).__name__
            raise NetworkError(
                f"Batch response does not match request: expected {expected} results, "
                f"received {received}",
                original=response,
                status_code=response.status_code,
                url=url,
            )
        return results

    def _reject_all(self, entries: list[PendingRequest], error: Exception) -> None:
        self._logger.warning(
            "Batch of %s operation(s) failed (%s): %s",
            len(entries),
            type(error).__name__,
            error,
        )
        for entry in entries:
            if not entry.future.done():
                entry.future.set_exception(error)

    @staticmethod
    def _batch_key(operation: Operation) -> str:
        return json.dumps(operation.headers, sort_keys=True)

    async def aclose(self) -> None:
        for key in list(self._open):
            self._flush(key)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
