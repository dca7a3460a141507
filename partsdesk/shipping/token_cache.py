"""Bearer-token cache for the shipping aggregator API.

One token per cache instance. The app factory builds a single cache at
startup and hands it to the ShippingClient; tests build their own.

Concurrency contract:
- Fresh token -> returned without any network call
- Stale/missing token -> exactly one login in flight per cache; concurrent
  callers wait on the lock and reuse the token it produced
- A failed login leaves the previous state untouched and raises
  UpstreamAuthError (no retry)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from partsdesk.errors import UpstreamAuthError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"


@dataclass(frozen=True)
class CachedToken:
    """A bearer token and the epoch second it stops being served."""

    value: str
    expires_at: float

    def is_fresh(self, now: float, margin: float = 0.0) -> bool:
        return now < self.expires_at - margin


class TokenCache:
    """Lazily refreshed bearer token for outbound carrier calls.

    ``ttl_seconds`` is our own validity window, kept well under the
    provider's token lifetime so a token never expires mid-request.
    """

    def __init__(
        self,
        http: httpx.Client,
        base_url: str,
        email: str,
        password: str,
        *,
        ttl_seconds: float = 540.0,
        margin_seconds: float = 30.0,
        clock: Callable[[], float] | None = None,
    ):
        if margin_seconds >= ttl_seconds:
            raise ValueError(
                f"margin_seconds ({margin_seconds}) must be below ttl_seconds ({ttl_seconds})"
            )
        self._http = http
        self._login_url = base_url.rstrip("/") + LOGIN_PATH
        self._email = email
        self._password = password
        self._ttl = ttl_seconds
        self._margin = margin_seconds
        self._clock = clock
        self._token: CachedToken | None = None
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    @property
    def cached(self) -> CachedToken | None:
        return self._token

    def get_token(self) -> str:
        """Return a valid bearer token, logging in if the cached one is stale."""
        token = self._token
        if token is not None and token.is_fresh(self._now(), self._margin):
            return token.value

        with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if token is not None and token.is_fresh(self._now(), self._margin):
                return token.value
            token = self._login()
            self._token = token
            return token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call logs in again."""
        with self._lock:
            self._token = None

    def _login(self) -> CachedToken:
        if not self._email or not self._password:
            raise UpstreamAuthError("Shipping credentials not configured")

        try:
            response = self._http.post(
                self._login_url,
                json={"email": self._email, "password": self._password},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Shipping login transport error: %s", type(e).__name__)
            raise UpstreamAuthError(f"Shipping login failed: {type(e).__name__}") from e

        if not response.is_success:
            logger.error("Shipping login rejected (HTTP %d)", response.status_code)
            raise UpstreamAuthError(
                f"Shipping login failed (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        try:
            value = response.json().get("token")
        except (ValueError, AttributeError):
            value = None
        if not value or not isinstance(value, str):
            raise UpstreamAuthError(
                "Shipping login response carried no token",
                status_code=response.status_code,
            )

        expires_at = self._now() + self._ttl
        logger.info("Shipping token refreshed (valid for %.0fs)", self._ttl)
        return CachedToken(value=value, expires_at=expires_at)
