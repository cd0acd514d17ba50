from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional


log = logging.getLogger("sonosrelay")


@dataclass(frozen=True)
class OAuthToken:
    access_token: str
    refresh_token: Optional[str] = None
    scope: str = ""
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[float] = None

    @classmethod
    def from_payload(cls, data: dict[str, Any], previous: Optional["OAuthToken"] = None) -> "OAuthToken":
        """Build a token from a token-endpoint response, keeping fields it omits."""

        base = asdict(previous) if previous else {}
        merged = {**base, **{k: v for k, v in data.items() if k in cls.__dataclass_fields__ and v is not None}}
        expires_in = merged.get("expires_in")
        if "expires_in" in data and expires_in is not None:
            try:
                merged["expires_at"] = time.time() + max(int(expires_in), 60)
            except (TypeError, ValueError):
                merged["expires_at"] = None
        return cls(**merged)

    def seconds_until_expiry(self) -> Optional[float]:
        if self.expires_at is not None:
            return float(self.expires_at) - time.time()
        if self.expires_in is not None:
            return float(self.expires_in)
        return None

    def has_scope(self, scope: str) -> bool:
        return scope in (self.scope or "").split()

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class TokenStore:
    """Holds the current credential for one provider and persists it as JSON.

    Collaborators receive the store, not the token, so a refresh swaps the
    value everywhere without touching any shared HTTP client.
    """

    def __init__(self, path: Path, *, name: str, required_scope: Optional[str] = None) -> None:
        self.path = Path(path)
        self.name = name
        self._required_scope = required_scope
        self._current: Optional[OAuthToken] = None

    @property
    def current(self) -> Optional[OAuthToken]:
        return self._current

    def load(self) -> Optional[OAuthToken]:
        if not self.path.exists():
            self._current = None
            return None
        try:
            data = json.loads(self.path.read_text())
            if not isinstance(data, dict) or not data.get("access_token"):
                raise ValueError("access_token missing")
            token = OAuthToken(**{k: v for k, v in data.items() if k in OAuthToken.__dataclass_fields__})
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            log.error("Error loading %s token file, it might be corrupted: %s", self.name, exc)
            self.delete()
            return None
        if self._required_scope and not token.has_scope(self._required_scope):
            log.error(
                "Stored %s token has an invalid or missing scope. Deleting it to force re-authentication.",
                self.name,
            )
            self.delete()
            return None
        self._current = token
        log.info("%s tokens loaded from %s", self.name, self.path)
        return token

    def replace(self, token: OAuthToken) -> OAuthToken:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(token.to_dict(), indent=2))
        self._current = token
        log.info("%s tokens saved to %s", self.name, self.path)
        return token

    def delete(self) -> None:
        self._current = None
        if self.path.exists():
            self.path.unlink()
            log.info("Invalid %s token file deleted.", self.name)

    def authorization_header(self) -> dict[str, str]:
        token = self._current
        if not token or not token.access_token:
            return {}
        return {"Authorization": f"Bearer {token.access_token}"}
