from __future__ import annotations

import logging

import httpx

from auth.models import TokenSet
from auth.token_store import TokenStore
from dashlink.errors import classify, raise_for_outcome

LOGGER = logging.getLogger("dashlink.tokens")

SIGN_IN_PATH = "/auth"
SIGN_OUT_PATH = "/auth/logout"

REFRESH_TOKENS_MUTATION = """
mutation RefreshTokens($refreshToken: String!, $notBefore: Float) {
  refreshTokens(refreshToken: $refreshToken, notBefore: $notBefore) {
    accessToken
    refreshToken
    expiresAt
  }
}
""".strip()


async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as error:
        raise classify(error) from error
    raise_for_outcome(response)
    return response


def _parse_json(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError as error:
        raise RuntimeError(f"Token response is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise RuntimeError("Token response must be a JSON object.")
    return payload


async def sign_in(client: httpx.AsyncClient, username: str, password: str) -> TokenSet:
    response = await _send(client, "GET", SIGN_IN_PATH, auth=(username, password))
    return TokenSet.from_payload(_parse_json(response))


async def refresh_tokens(
    client: httpx.AsyncClient,
    endpoint: str,
    tokens: TokenSet,
    *,
    not_before: float,
) -> TokenSet:
    """Exchange the refresh token for a new token pair.

    Sent on its own, outside the batching link. The backend requires the
    current access token as bearer even when it has already expired.
    """
    if not tokens.refresh_token:
        raise RuntimeError("No refresh token available.")

    headers = {}
    if tokens.access_token:
        headers["Authorization"] = f"Bearer {tokens.access_token}"

    response = await _send(
        client,
        "POST",
        endpoint,
        headers=headers,
        json={
            "query": REFRESH_TOKENS_MUTATION,
            "variables": {
                "refreshToken": tokens.refresh_token,
                "notBefore": not_before,
            },
            "operationName": "RefreshTokens",
        },
    )

    payload = _parse_json(response)
    errors = payload.get("errors")
    if errors:
        messages = ", ".join(str(item.get("message", item)) for item in errors)
        raise RuntimeError(f"Token refresh rejected: {messages}")

    data = payload.get("data") or {}
    refreshed = data.get("refreshTokens")
    if not isinstance(refreshed, dict):
        raise RuntimeError("Token refresh response missing refreshTokens.")
    return TokenSet.from_payload(refreshed)


async def sign_out(client: httpx.AsyncClient, store: TokenStore) -> None:
    tokens = store.get()
    if tokens.refresh_token:
        headers = {}
        if tokens.access_token:
            headers["Authorization"] = f"Bearer {tokens.access_token}"
        try:
            await _send(
                client,
                "POST",
                SIGN_OUT_PATH,
                headers=headers,
                json={"refresh_token": tokens.refresh_token},
            )
        except Exception as error:
            LOGGER.warning("Sign-out request failed; clearing local session anyway: %s", error)
    store.clear()
