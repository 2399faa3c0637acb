import httpx
import pytest

from dashlink.errors import (
    AuthenticationError,
    ClientError,
    NetworkError,
    ServerError,
    UnauthorizedError,
    classify,
    describe,
    raise_for_outcome,
)

GRAPHQL_URL = "https://backend.example.com/graphql"


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", GRAPHQL_URL), text="body")


def test_transport_failure_is_network_error() -> None:
    request = httpx.Request("POST", GRAPHQL_URL)
    failure = httpx.ConnectError("connection refused", request=request)

    error = classify(failure)

    assert isinstance(error, NetworkError)
    assert error.original is failure
    assert error.status_code is None
    assert error.url == GRAPHQL_URL
    assert error.retryable is True


def test_exception_without_request_is_network_error() -> None:
    error = classify(OSError("offline"))

    assert isinstance(error, NetworkError)
    assert error.url is None


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (101, NetworkError),
        (400, ClientError),
        (401, UnauthorizedError),
        (403, ClientError),
        (404, ClientError),
        (499, ClientError),
        (500, ServerError),
        (503, ServerError),
    ],
)
def test_status_classification(status: int, expected: type) -> None:
    response = _response(status)

    error = classify(response)

    assert type(error) is expected
    assert error.status_code == status
    assert error.url == GRAPHQL_URL
    assert error.original is response


@pytest.mark.parametrize("status", [200, 204, 302])
def test_success_is_not_an_error(status: int) -> None:
    assert classify(_response(status)) is None


def test_401_is_never_client_error() -> None:
    error = classify(_response(401))

    assert isinstance(error, UnauthorizedError)
    assert not isinstance(error, ClientError)


def test_classification_is_deterministic() -> None:
    response = _response(502)

    assert type(classify(response)) is type(classify(response))


def test_classified_error_passes_through() -> None:
    error = ServerError("boom", status_code=500)

    assert classify(error) is error


def test_raise_for_outcome_chains_cause() -> None:
    failure = httpx.ReadTimeout("timed out")

    with pytest.raises(NetworkError) as raised:
        raise_for_outcome(failure)

    assert raised.value.__cause__ is failure


def test_raise_for_outcome_success() -> None:
    raise_for_outcome(_response(200))


def test_authentication_error_is_unauthorized() -> None:
    error = AuthenticationError()

    assert isinstance(error, UnauthorizedError)
    assert error.status_code == 401


def test_describe_messages() -> None:
    assert describe(NetworkError("x")).startswith("Unable to reach the backend")
    assert describe(UnauthorizedError("x", status_code=401)) == (
        "Your session has expired. Please sign in again."
    )
    assert describe(ServerError("x", status_code=500)) == (
        "The backend is experiencing issues. Please try again later."
    )
    assert describe(ClientError("x", status_code=403)) == (
        "You don't have permission to perform this action."
    )
    assert describe(ClientError("x", status_code=404)) == "The requested resource was not found."
    assert describe(ClientError("x", status_code=422)) == (
        "The request was rejected with status 422."
    )
