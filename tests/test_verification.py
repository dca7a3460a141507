"""Tests for webhook and checkout signature verification.

Covers:
    Valid / invalid / tampered signatures
    Fail-closed on missing secret or header
    Never raises on malformed input
    Property-based: any single-bit flip of body or signature is rejected
"""

from __future__ import annotations

import hashlib
import hmac

from hypothesis import given, settings
from hypothesis import strategies as st

from partsdesk.webhooks.verification import verify, verify_payment_signature

SECRET = "whsec-test"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _flip_bit(data: bytes, index: int) -> bytes:
    byte, bit = divmod(index, 8)
    mutated = bytearray(data)
    mutated[byte] ^= 1 << bit
    return bytes(mutated)


class TestVerify:
    def test_valid_signature(self):
        body = b'{"event": "payment.captured"}'
        assert verify(body, _sign(body), SECRET) is True

    def test_invalid_signature(self):
        assert verify(b"{}", "0" * 64, SECRET) is False

    def test_tampered_body(self):
        body = b'{"amount": 100}'
        assert verify(b'{"amount": 999}', _sign(body), SECRET) is False

    def test_wrong_secret(self):
        body = b"{}"
        assert verify(body, _sign(body, "other"), SECRET) is False

    def test_missing_signature(self):
        assert verify(b"body", None, SECRET) is False

    def test_empty_signature(self):
        assert verify(b"body", "", SECRET) is False

    def test_missing_secret_rejects(self):
        """No secret configured -> always reject (fail-closed)."""
        body = b"body"
        assert verify(body, _sign(body, ""), "") is False

    def test_non_ascii_signature(self):
        assert verify(b"body", "é" * 64, SECRET) is False

    def test_uppercase_hex_rejected(self):
        body = b"body"
        assert verify(body, _sign(body).upper(), SECRET) is False

    def test_truncated_signature(self):
        body = b"body"
        assert verify(body, _sign(body)[:-2], SECRET) is False

    def test_non_bytes_body(self):
        assert verify("body", _sign(b"body"), SECRET) is False  # type: ignore[arg-type]


class TestVerifyProperties:
    @given(st.binary(min_size=1, max_size=512), st.data())
    @settings(max_examples=100)
    def test_body_bit_flip_rejected(self, body, data):
        sig = _sign(body)
        index = data.draw(st.integers(min_value=0, max_value=len(body) * 8 - 1))
        assert verify(body, sig, SECRET) is True
        assert verify(_flip_bit(body, index), sig, SECRET) is False

    @given(st.binary(max_size=512), st.integers(min_value=0, max_value=64 * 8 - 1))
    @settings(max_examples=100)
    def test_signature_bit_flip_rejected(self, body, index):
        sig = _sign(body).encode("ascii")
        mutated = _flip_bit(sig, index)
        try:
            mutated_str = mutated.decode("ascii")
        except UnicodeDecodeError:
            mutated_str = mutated.decode("latin-1")
        assert verify(body, mutated_str, SECRET) is False

    @given(st.binary(max_size=256), st.text(max_size=80))
    @settings(max_examples=100)
    def test_never_raises(self, body, header):
        assert verify(body, header, SECRET) in (True, False)


class TestVerifyPaymentSignature:
    KEY = "key-secret-test"

    def _sig(self, order_id: str, payment_id: str) -> str:
        return hmac.new(self.KEY.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()

    def test_valid(self):
        sig = self._sig("order_A", "pay_B")
        assert verify_payment_signature("order_A", "pay_B", sig, self.KEY) is True

    def test_swapped_ids_rejected(self):
        sig = self._sig("order_A", "pay_B")
        assert verify_payment_signature("pay_B", "order_A", sig, self.KEY) is False

    def test_missing_fields(self):
        assert verify_payment_signature("", "pay_B", "x", self.KEY) is False
        assert verify_payment_signature("order_A", "", "x", self.KEY) is False
        assert verify_payment_signature("order_A", "pay_B", None, self.KEY) is False

    def test_missing_secret(self):
        sig = self._sig("order_A", "pay_B")
        assert verify_payment_signature("order_A", "pay_B", sig, "") is False
