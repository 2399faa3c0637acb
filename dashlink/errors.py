"""Failure taxonomy for the link chain.

Every failure observed by the pipeline is mapped onto exactly one of
``NetworkError``, ``ClientError``, ``UnauthorizedError`` or ``ServerError``.
The classifier only labels failures; recovery belongs to the error link and
to callers.
"""

from __future__ import annotations

import httpx


class ClassifiedError(Exception):
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        original: BaseException | httpx.Response | None = None,
        status_code: int | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.original = original
        self.status_code = status_code
        self.url = url


class NetworkError(ClassifiedError):
    """No usable response was obtained."""

    retryable = True


class ClientError(ClassifiedError):
    pass


class UnauthorizedError(ClassifiedError):
    pass


class ServerError(ClassifiedError):
    retryable = True


class AuthenticationError(UnauthorizedError):
    """Credentials are missing, or could not be refreshed."""

    def __init__(self, message: str = "Authentication required.", **kwargs) -> None:
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


def _request_url(source: BaseException | httpx.Response) -> str | None:
    # httpx raises RuntimeError when no request is attached.
    try:
        request = source.request  # type: ignore[union-attr]
    except (AttributeError, RuntimeError):
        return None
    return str(request.url)


def classify(outcome: BaseException | httpx.Response) -> ClassifiedError | None:
    """Label a transport outcome; ``None`` means success."""
    if isinstance(outcome, ClassifiedError):
        return outcome

    if isinstance(outcome, BaseException):
        return NetworkError(
            f"Network request failed: {outcome}",
            original=outcome,
            url=_request_url(outcome),
        )

    status = outcome.status_code
    url = _request_url(outcome)

    if status < 200:
        return NetworkError(
            f"Unexpected informational response {status}",
            original=outcome,
            status_code=status,
            url=url,
        )
    if status >= 500:
        return ServerError(
            f"Server responded with status {status}",
            original=outcome,
            status_code=status,
            url=url,
        )
    if status == 401:
        return UnauthorizedError(
            "Request unauthorized",
            original=outcome,
            status_code=status,
            url=url,
        )
    if status >= 400:
        return ClientError(
            f"Request rejected with status {status}",
            original=outcome,
            status_code=status,
            url=url,
        )
    return None


def raise_for_outcome(outcome: BaseException | httpx.Response) -> None:
    error = classify(outcome)
    if error is None:
        return
    if isinstance(outcome, BaseException) and error is not outcome:
        raise error from outcome
    raise error


def describe(error: ClassifiedError) -> str:
    if isinstance(error, NetworkError):
        return "Unable to reach the backend. Check your connection and try again."
    if isinstance(error, UnauthorizedError):
        return "Your session has expired. Please sign in again."
    if isinstance(error, ServerError):
        return "The backend is experiencing issues. Please try again later."
    if isinstance(error, ClientError):
        if error.status_code == 403:
            return "You don't have permission to perform this action."
        if error.status_code == 404:
            return "The requested resource was not found."
        return f"The request was rejected with status {error.status_code}."
    raise TypeError(f"Unknown error classification: {type(error).__name__}")
