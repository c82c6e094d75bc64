"""
Offer token codec.

Tokens are two dot-joined URL-safe base64 segments without padding:
the compact JSON payload and an HMAC-SHA256 signature over the first
segment. Payloads always carry ``exp`` in epoch milliseconds.
"""
import base64
import binascii
import hashlib
import hmac
import json
import time

from repair_booking.errors import BadFormat, BadPayload, BadSignature, Expired

TOKEN_VERSION = 1


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _signature(segment: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), segment.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def now_ms() -> int:
    return int(time.time() * 1000)


def sign_token(payload: dict, secret: str) -> str:
    """Serialize and sign a payload into a token string."""
    body = json.dumps(payload, separators=(",", ":"))
    segment = _b64url_encode(body.encode("utf-8"))
    return f"{segment}.{_signature(segment, secret)}"


def verify_token(token: str, secret: str, now: int | None = None) -> dict:
    """
    Verify a token and return its payload.

    Args:
        token: Token string as produced by sign_token
        secret: Server-side signing secret
        now: Current time in epoch milliseconds (defaults to the clock)

    Returns:
        The decoded payload dict

    Raises:
        BadFormat: token is not two non-empty segments
        BadSignature: signature does not match
        BadPayload: first segment is not a JSON object
        Expired: payload ``exp`` is in the past
    """
    parts = str(token or "").strip().split(".")
    if len(parts) != 2 or not all(parts):
        raise BadFormat()

    segment, signature = parts
    expected = _signature(segment, secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise BadSignature()

    try:
        payload = json.loads(_b64url_decode(segment).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise BadPayload() from None
    if not isinstance(payload, dict):
        raise BadPayload()

    exp = payload.get("exp")
    if exp is not None:
        try:
            expires_at = int(exp)
        except (TypeError, ValueError):
            raise BadPayload() from None
        if (now if now is not None else now_ms()) > expires_at:
            raise Expired()

    return payload


def make_offer_payload(
    request_id: int,
    appointment_type: str,
    zone_code: str,
    service_date: str,
    slot_index: int,
    expires_at_ms: int,
) -> dict:
    return {
        "v": TOKEN_VERSION,
        "request_id": request_id,
        "appointment_type": appointment_type,
        "zone": zone_code,
        "service_date": service_date,
        "slot_index": slot_index,
        "exp": expires_at_ms,
    }


def make_request_payload(request_id: int, expires_at_ms: int) -> dict:
    return {
        "v": TOKEN_VERSION,
        "kind": "request",
        "request_id": request_id,
        "exp": expires_at_ms,
    }
