from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from agentrelay.core.errors import InvalidSignature
from agentrelay.webhooks import require_valid_signature, serialize_payload, sign, verify


def test_serialization_is_stable_regardless_of_key_order() -> None:
    assert serialize_payload({"b": 1, "a": [1, 2]}) == serialize_payload({"a": [1, 2], "b": 1})
    assert serialize_payload({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


def test_serialization_handles_datetimes_and_unicode() -> None:
    body = serialize_payload({"at": datetime(2026, 1, 2, tzinfo=timezone.utc), "msg": "héllo"})
    assert body == '{"at":"2026-01-02T00:00:00Z","msg":"héllo"}'.encode("utf-8")


def test_signature_is_hex_hmac_sha256_of_exact_bytes() -> None:
    body = b'{"event":"agent.completed"}'
    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert sign(body, "s3cret") == expected
    assert verify(body, expected, "s3cret")


def test_any_change_breaks_verification() -> None:
    body = b'{"a":1}'
    signature = sign(body, "secret")
    assert not verify(b'{"a":2}', signature, "secret")
    assert not verify(body, signature, "other")
    assert not verify(body, signature[:-1] + ("0" if signature[-1] != "0" else "1"), "secret")


def test_receiver_guard() -> None:
    body = b"{}"
    require_valid_signature(body, sign(body, "k"), "k")
    with pytest.raises(InvalidSignature):
        require_valid_signature(body, None, "k")
    with pytest.raises(InvalidSignature):
        require_valid_signature(body, "deadbeef", "k")
