"""Tests for the shipping bearer-token cache.

Tests:
- Fresh token served without network calls (call-count assertions)
- Expiry and safety margin trigger exactly one login
- Login failures raise UpstreamAuthError and keep prior state
- Concurrent callers converge on one in-flight login
"""

from __future__ import annotations

import threading
import time

import httpx
import pytest
from freezegun import freeze_time

from helpers import CARRIER_URL, FakeCarrier
from partsdesk.errors import UpstreamAuthError
from partsdesk.shipping.token_cache import CachedToken, TokenCache


def _cache(carrier: FakeCarrier, **kwargs) -> TokenCache:
    return TokenCache(
        carrier.client(),
        CARRIER_URL,
        "ops@example.com",
        "s3cret",
        **kwargs,
    )


class TestCachedToken:
    def test_fresh_before_expiry(self):
        assert CachedToken("t", expires_at=100.0).is_fresh(99.0) is True

    def test_stale_at_expiry(self):
        assert CachedToken("t", expires_at=100.0).is_fresh(100.0) is False

    def test_margin_shortens_life(self):
        assert CachedToken("t", expires_at=100.0).is_fresh(80.0, margin=30.0) is False


class TestTokenReuse:
    def test_first_call_logs_in(self):
        carrier = FakeCarrier()
        cache = _cache(carrier)
        assert cache.get_token() == "tok-1"
        assert carrier.login_calls == 1

    def test_cached_token_reused_without_network(self):
        carrier = FakeCarrier()
        cache = _cache(carrier)
        first = cache.get_token()
        for _ in range(5):
            assert cache.get_token() == first
        assert carrier.login_calls == 1

    def test_login_sends_credentials(self):
        carrier = FakeCarrier()
        _cache(carrier).get_token()
        request = carrier.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{CARRIER_URL}/auth/login"
        assert b'"email":"ops@example.com"' in request.content.replace(b" ", b"")

    def test_injected_clock(self):
        now = [1000.0]
        carrier = FakeCarrier()
        cache = _cache(carrier, ttl_seconds=60, margin_seconds=10, clock=lambda: now[0])
        cache.get_token()
        assert cache.cached.expires_at == 1060.0
        now[0] = 1049.0
        cache.get_token()
        assert carrier.login_calls == 1
        now[0] = 1050.0
        assert cache.get_token() == "tok-2"
        assert carrier.login_calls == 2


class TestTokenExpiry:
    def test_expired_token_triggers_exactly_one_login(self):
        carrier = FakeCarrier()
        with freeze_time("2026-01-01 10:00:00") as frozen:
            cache = _cache(carrier)
            assert cache.get_token() == "tok-1"

            frozen.tick(600)  # past the 540s window
            assert cache.get_token() == "tok-2"
            assert cache.get_token() == "tok-2"
        assert carrier.login_calls == 2

    def test_refresh_inside_safety_margin(self):
        carrier = FakeCarrier()
        with freeze_time("2026-01-01 10:00:00") as frozen:
            cache = _cache(carrier, ttl_seconds=540, margin_seconds=30)
            cache.get_token()

            frozen.tick(500)
            assert cache.get_token() == "tok-1"

            frozen.tick(15)  # 515s: inside the last 30s
            assert cache.get_token() == "tok-2"

    def test_invalidate_forces_login(self):
        carrier = FakeCarrier()
        cache = _cache(carrier)
        cache.get_token()
        cache.invalidate()
        assert cache.cached is None
        assert cache.get_token() == "tok-2"

    def test_margin_must_be_below_ttl(self):
        with pytest.raises(ValueError):
            _cache(FakeCarrier(), ttl_seconds=30, margin_seconds=30)


class TestLoginFailures:
    def test_rejected_credentials(self):
        carrier = FakeCarrier()
        carrier.login_status = 403
        with pytest.raises(UpstreamAuthError) as exc_info:
            _cache(carrier).get_token()
        assert exc_info.value.status_code == 403

    def test_missing_token_in_response(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"message": "ok"}))
        cache = TokenCache(httpx.Client(transport=transport), CARRIER_URL, "a@b.c", "pw")
        with pytest.raises(UpstreamAuthError):
            cache.get_token()

    def test_non_json_response(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        cache = TokenCache(httpx.Client(transport=transport), CARRIER_URL, "a@b.c", "pw")
        with pytest.raises(UpstreamAuthError):
            cache.get_token()

    def test_transport_error(self):
        def _boom(request):
            raise httpx.ConnectError("refused", request=request)

        cache = TokenCache(httpx.Client(transport=httpx.MockTransport(_boom)), CARRIER_URL, "a@b.c", "pw")
        with pytest.raises(UpstreamAuthError):
            cache.get_token()

    def test_missing_credentials_no_network(self):
        carrier = FakeCarrier()
        cache = TokenCache(carrier.client(), CARRIER_URL, "", "")
        with pytest.raises(UpstreamAuthError):
            cache.get_token()
        assert carrier.login_calls == 0

    def test_failed_refresh_keeps_no_token(self):
        carrier = FakeCarrier()
        carrier.login_status = 500
        cache = _cache(carrier)
        with pytest.raises(UpstreamAuthError):
            cache.get_token()
        assert cache.cached is None


class TestConcurrentRefresh:
    def test_concurrent_callers_share_one_login(self):
        calls = []
        gate = threading.Event()

        def _slow_login(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            gate.wait(timeout=2)
            time.sleep(0.05)
            return httpx.Response(200, json={"token": f"tok-{len(calls)}"})

        cache = TokenCache(
            httpx.Client(transport=httpx.MockTransport(_slow_login)),
            CARRIER_URL,
            "a@b.c",
            "pw",
        )
        results: list[str] = []

        def _worker():
            results.append(cache.get_token())

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        gate.set()
        for t in threads:
            t.join(timeout=5)

        assert len(calls) == 1
        assert results == ["tok-1"] * 8
