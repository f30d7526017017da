from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json


def derive_key(session_secret: str) -> str:
    """Derive a stable signing key from the configured session secret."""
    return hashlib.sha256(f"setshop-session:{session_secret}".encode()).hexdigest()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as error:
        raise RuntimeError("Invalid token encoding.") from error


def encode(payload: dict, key: str) -> str:
    data = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    return f"{_b64encode(data)}.{_b64encode(sig)}"


def decode(token: str, key: str) -> dict:
    data_b64, sep, sig_b64 = token.partition(".")
    if not sep or not data_b64 or not sig_b64:
        raise RuntimeError("Invalid token format.")
    data = _b64decode(data_b64)
    expected_sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, _b64decode(sig_b64)):
        raise RuntimeError("Token signature verification failed.")
    try:
        payload = json.loads(data)
    except ValueError as error:
        raise RuntimeError("Token payload is not valid JSON.") from error
    if not isinstance(payload, dict):
        raise RuntimeError("Token payload must be a JSON object.")
    return payload
