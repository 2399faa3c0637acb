from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum


class RefreshState(Enum):
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    REFRESHING = "refreshing"
    INVALID = "invalid"


@dataclass(frozen=True)
class TokenSet:
    """Bearer access/refresh token pair held by the token store.

    ``access_token`` and ``expires_at`` are either both set or both ``None``.
    An instance with every field ``None`` means signed out.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None

    def __post_init__(self) -> None:
        if (self.access_token is None) != (self.expires_at is None):
            raise ValueError("access_token and expires_at must be set together.")

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return True
        current = time.time() if now is None else now
        return current >= self.expires_at

    def without_access(self) -> "TokenSet":
        return TokenSet(refresh_token=self.refresh_token)

    def to_payload(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenSet":
        """Build a token set from a token response.

        Accepts the snake_case shape returned by ``/auth`` and the camelCase
        shape returned by the refresh mutation.
        """
        access_token = payload.get("access_token", payload.get("accessToken"))
        refresh_token = payload.get("refresh_token", payload.get("refreshToken"))
        expires_at = payload.get("expires_at", payload.get("expiresAt"))

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise RuntimeError("Token response missing refresh_token.")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise RuntimeError("Token response missing expires_at.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=float(expires_at),
        )
