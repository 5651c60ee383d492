"""OAuth token value with an absolute expiry."""

import time
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Token:
    """Access/refresh pair as issued by the Spotify accounts service.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Token used to obtain a new access token.
        expires_at: Unix timestamp (whole seconds) when the access token expires.
        token_type: Token type reported by the provider, normally "Bearer".
        scope: Space separated scopes granted to the token.
    """

    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_response(
        cls,
        payload: dict[str, Any],
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> "Token":
        """Build a token from a token endpoint response issued at `now`."""
        issued_at = int(time.time() if now is None else now)
        refresh_token = payload.get("refresh_token") or previous_refresh_token or ""
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=issued_at + int(payload["expires_in"]),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope") or "",
        )

    def has_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=int(data["expires_at"]),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )
