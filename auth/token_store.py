from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from auth.models import TokenSet

LOGGER = logging.getLogger("dashlink.tokens")

DEFAULT_STORAGE_KEY = "dashlink:tokens"

Listener = Callable[[TokenSet], None]


class TokenStorage(ABC):
    """Durable key-value slot backing the token store."""

    @abstractmethod
    def read(self, key: str) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    def write(self, key: str, payload: dict) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryTokenStorage(TokenStorage):
    def __init__(self) -> None:
        self._slots: dict[str, dict] = {}

    def read(self, key: str) -> dict | None:
        payload = self._slots.get(key)
        return dict(payload) if payload is not None else None

    def write(self, key: str, payload: dict) -> None:
        self._slots[key] = dict(payload)

    def delete(self, key: str) -> None:
        self._slots.pop(key, None)


class FileTokenStorage(TokenStorage):
    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path)

    def read(self, key: str) -> dict | None:
        return self._read_all().get(key)

    def write(self, key: str, payload: dict) -> None:
        all_tokens = self._read_all()
        all_tokens[key] = payload
        self._write_all(all_tokens)

    def delete(self, key: str) -> None:
        all_tokens = self._read_all()
        if all_tokens.pop(key, None) is not None:
            self._write_all(all_tokens)

    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class TokenStore:
    """Holder of the current token set.

    Subscribers are called synchronously, in subscription order, once per
    ``set``/``invalidate``/``clear``. The new value is already visible through
    ``get()`` when they run.
    """

    def __init__(
        self,
        storage: TokenStorage | None = None,
        *,
        key: str = DEFAULT_STORAGE_KEY,
    ) -> None:
        self._storage = storage or MemoryTokenStorage()
        self._key = key
        self._tokens = TokenSet()
        self._listeners: list[Listener] = []
        self.load()

    def load(self) -> TokenSet:
        payload = self._storage.read(self._key)
        self._tokens = self._decode(payload)
        return self._tokens

    def get(self) -> TokenSet:
        return self._tokens

    def set(self, tokens: TokenSet) -> None:
        if tokens.is_empty:
            self.clear()
            return
        self._storage.write(self._key, tokens.to_payload())
        self._replace(tokens)

    def invalidate(self) -> None:
        """Drop the access token, keeping the refresh token for the next refresh."""
        tokens = self._tokens.without_access()
        if tokens.is_empty:
            self.clear()
            return
        self._storage.write(self._key, tokens.to_payload())
        self._replace(tokens)

    def clear(self) -> None:
        self._storage.delete(self._key)
        self._replace(TokenSet())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sync(self) -> bool:
        """Pick up changes written to storage by another process.

        Returns True when the in-memory token set was replaced.
        """
        tokens = self._decode(self._storage.read(self._key))
        if tokens == self._tokens:
            return False
        LOGGER.info("Token storage changed externally; resynchronizing")
        self._replace(tokens)
        return True

    async def watch(
        self,
        interval: float = 1.0,
        stop: asyncio.Event | None = None,
        *,
        sleep=asyncio.sleep,
    ) -> None:
        while stop is None or not stop.is_set():
            self.sync()
            await sleep(interval)

    def _replace(self, tokens: TokenSet) -> None:
        self._tokens = tokens
        for listener in list(self._listeners):
            try:
                listener(tokens)
            except Exception:
                LOGGER.exception("Token store listener %r failed", listener)

    def _decode(self, payload: dict | None) -> TokenSet:
        if not payload:
            return TokenSet()
        try:
            return TokenSet(
                access_token=payload.get("access_token"),
                refresh_token=payload.get("refresh_token"),
                expires_at=payload.get("expires_at"),
            )
        except ValueError:
            LOGGER.warning("Discarding malformed token set in storage key %s", self._key)
            return TokenSet()
