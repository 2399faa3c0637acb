import asyncio
import json

import pytest

from auth.models import TokenSet
from auth.token_store import (
    DEFAULT_STORAGE_KEY,
    FileTokenStorage,
    MemoryTokenStorage,
    TokenStore,
)


def test_empty_store_is_signed_out(store) -> None:
    assert store.get() == TokenSet()
    assert store.get().is_empty


def test_set_get(store) -> None:
    tokens = TokenSet("access", "refresh", 1234.0)

    store.set(tokens)

    assert store.get() == tokens


def test_token_set_requires_access_and_expiry_together() -> None:
    with pytest.raises(ValueError):
        TokenSet("access", "refresh", None)
    with pytest.raises(ValueError):
        TokenSet(None, "refresh", 1234.0)


def test_set_notifies_each_subscriber_once(store) -> None:
    seen_a: list[TokenSet] = []
    seen_b: list[TokenSet] = []
    store.subscribe(seen_a.append)
    store.subscribe(seen_b.append)
    tokens = TokenSet("access", "refresh", 1234.0)

    store.set(tokens)

    assert seen_a == [tokens]
    assert seen_b == [tokens]


def test_clear_notifies_synchronously_with_cleared_state(store) -> None:
    store.set(TokenSet("access", "refresh", 1234.0))
    observed: list[TokenSet] = []
    store.subscribe(lambda tokens: observed.append(store.get()))

    store.clear()

    assert observed == [TokenSet()]
    assert store.get().is_empty


def test_subscribers_called_in_order(store) -> None:
    calls: list[str] = []
    store.subscribe(lambda tokens: calls.append("first"))
    store.subscribe(lambda tokens: calls.append("second"))

    store.clear()

    assert calls == ["first", "second"]


def test_unsubscribe(store) -> None:
    seen: list[TokenSet] = []
    unsubscribe = store.subscribe(seen.append)

    unsubscribe()
    store.set(TokenSet("access", "refresh", 1234.0))
    unsubscribe()

    assert seen == []


def test_failing_listener_does_not_block_others(store) -> None:
    seen: list[TokenSet] = []

    def broken(tokens: TokenSet) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)

    store.clear()

    assert seen == [TokenSet()]


def test_invalidate_keeps_refresh_token(store) -> None:
    store.set(TokenSet("access", "refresh", 1234.0))
    seen: list[TokenSet] = []
    store.subscribe(seen.append)

    store.invalidate()

    assert store.get() == TokenSet(refresh_token="refresh")
    assert seen == [TokenSet(refresh_token="refresh")]


def test_invalidate_without_refresh_token_clears(store) -> None:
    store.set(TokenSet("access", None, 1234.0))

    store.invalidate()

    assert store.get().is_empty


def test_store_initializes_from_storage() -> None:
    storage = MemoryTokenStorage()
    storage.write(
        DEFAULT_STORAGE_KEY,
        {"access_token": "access", "refresh_token": "refresh", "expires_at": 1234.0},
    )

    store = TokenStore(storage)

    assert store.get() == TokenSet("access", "refresh", 1234.0)


def test_malformed_storage_is_discarded() -> None:
    storage = MemoryTokenStorage()
    storage.write(DEFAULT_STORAGE_KEY, {"access_token": "access", "expires_at": None})

    store = TokenStore(storage)

    assert store.get().is_empty


def test_sync_picks_up_external_change() -> None:
    storage = MemoryTokenStorage()
    store = TokenStore(storage)
    seen: list[TokenSet] = []
    store.subscribe(seen.append)

    storage.write(
        DEFAULT_STORAGE_KEY,
        {"access_token": "other", "refresh_token": "refresh", "expires_at": 99.0},
    )

    assert store.sync() is True
    assert store.sync() is False
    assert store.get() == TokenSet("other", "refresh", 99.0)
    assert seen == [TokenSet("other", "refresh", 99.0)]


def test_sync_picks_up_external_sign_out() -> None:
    storage = MemoryTokenStorage()
    store = TokenStore(storage)
    store.set(TokenSet("access", "refresh", 1234.0))

    storage.delete(DEFAULT_STORAGE_KEY)

    assert store.sync() is True
    assert store.get().is_empty


@pytest.mark.asyncio
async def test_watch_polls_until_stopped() -> None:
    storage = MemoryTokenStorage()
    store = TokenStore(storage)
    stop = asyncio.Event()
    sleeps: list[float] = []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        storage.write(
            DEFAULT_STORAGE_KEY,
            {"access_token": "access", "refresh_token": "refresh", "expires_at": 1.0},
        )
        stop.set()

    await store.watch(0.5, stop, sleep=sleep)

    assert sleeps == [0.5]
    assert store.get().is_empty
    assert store.sync() is True


def test_file_storage_persists_across_stores(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    first = TokenStore(FileTokenStorage(path))
    tokens = TokenSet("access", "refresh", 1234.0)

    first.set(tokens)

    second = TokenStore(FileTokenStorage(path))
    assert second.get() == tokens


def test_file_storage_clear_removes_key(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = TokenStore(FileTokenStorage(path))
    store.set(TokenSet("access", "refresh", 1234.0))

    store.clear()

    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_file_storage_missing_file(tmp_path) -> None:
    storage = FileTokenStorage(tmp_path / "missing.json")

    assert storage.read(DEFAULT_STORAGE_KEY) is None


def test_file_storage_rejects_invalid_file(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(RuntimeError, match="expected top-level JSON object"):
        FileTokenStorage(path).read(DEFAULT_STORAGE_KEY)
