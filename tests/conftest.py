import pytest

from auth.models import TokenSet
from auth.token_store import MemoryTokenStorage, TokenStore
from dashlink.operation import Link, Operation


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingLink(Link):
    def __init__(self) -> None:
        self.operations: list[Operation] = []

    async def request(self, operation: Operation) -> dict:
        self.operations.append(operation)
        return {"data": {"operation": operation.operation_name}}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> TokenStore:
    return TokenStore(MemoryTokenStorage())


@pytest.fixture
def recording_link() -> RecordingLink:
    return RecordingLink()


@pytest.fixture
def signed_in_store(store, clock) -> TokenStore:
    store.set(TokenSet("access-1", "refresh-1", clock.now + 3600))
    return store
