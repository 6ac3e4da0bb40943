from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from rxautomate.errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class Token:
    value: str
    expires_at: float
    scopes: tuple[str, ...] = ()


class TokenCache:
    """Holds one OAuth2 bearer token for a single API client.

    Concurrent callers that find the token stale wait on the same refresh
    instead of each exchanging credentials.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: tuple[str, ...],
        safety_margin: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http_client
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scopes = scopes
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Token | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, token: Token | None) -> bool:
        return token is not None and self._clock() < token.expires_at - self._safety_margin

    async def get_token(self) -> Token:
        token = self._token
        if self._is_fresh(token):
            return token  # type: ignore[return-value]

        async with self._lock:
            # Another waiter may have refreshed while we queued on the lock
            if self._is_fresh(self._token):
                return self._token  # type: ignore[return-value]
            self._token = await self._exchange()
            return self._token

    def invalidate(self) -> None:
        self._token = None

    async def _exchange(self) -> Token:
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": " ".join(self._scopes),
        }
        try:
            response = await self._http.post(
                self._token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            logger.error("NHS token exchange failed: %s", exc)
            raise AuthError(message=f"Token endpoint unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error("NHS token exchange rejected with status %d", response.status_code)
            raise AuthError(message=f"Token endpoint returned {response.status_code}")

        try:
            data = response.json()
            access_token = data["access_token"]
        except (ValueError, KeyError) as exc:
            raise AuthError(message="Token endpoint returned no access_token") from exc

        expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN
        scopes = tuple(data["scope"].split()) if data.get("scope") else self._scopes
        logger.info("Obtained NHS API token (expires_in=%ss)", expires_in)
        return Token(
            value=access_token,
            expires_at=self._clock() + float(expires_in),
            scopes=scopes,
        )
