"""Deterministic payload serialization and HMAC-SHA256 signatures.

The sender signs the exact bytes it puts on the wire; receivers must verify
against the raw request body, never against a re-serialized copy.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Union

from pydantic_core import to_jsonable_python

from ..core.errors import InvalidSignature


def _key(secret: Union[str, bytes]) -> bytes:
    return secret.encode("utf-8") if isinstance(secret, str) else secret


def serialize_payload(payload: Any) -> bytes:
    """Serialize ``payload`` to JSON bytes with stable key ordering."""
    return json.dumps(
        to_jsonable_python(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def sign(payload: bytes, secret: Union[str, bytes]) -> str:
    """Return the hex-encoded HMAC-SHA256 of ``payload``."""
    return hmac.new(_key(secret), payload, hashlib.sha256).hexdigest()


def verify(payload: bytes, signature: str, secret: Union[str, bytes]) -> bool:
    """Constant-time check that ``signature`` matches ``payload`` under ``secret``."""
    expected = sign(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def require_valid_signature(payload: bytes, signature: str | None, secret: Union[str, bytes]) -> None:
    """
    Receiver-side guard.

    Raises:
        InvalidSignature: If the signature is missing or does not verify.
    """
    if not signature or not verify(payload, signature, secret):
        raise InvalidSignature("webhook signature does not match payload")
