"""
Webhook Payload Signing

HMAC-SHA256 over ``"{timestamp}.{body}"``. The signature header has the form
``t=<unix seconds>,v1=<hex>``; while a rotated-out secret is still in its
grace period the header carries one ``v1`` entry per valid secret so
receivers holding either secret can verify.
"""

import hashlib
import hmac
import time

from enhance_gateway.core.config.constants import SIGNATURE_TOLERANCE_SECONDS


def sign_payload(secret: str, timestamp: int, body: str) -> str:
    """Hex HMAC-SHA256 of ``f"{timestamp}.{body}"``."""
    signed_payload = f"{timestamp}.{body}"
    return hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()


def build_signature_header(secrets: list[str], timestamp: int, body: str) -> str:
    parts = [f"t={timestamp}"]
    parts.extend(f"v1={sign_payload(secret, timestamp, body)}" for secret in secrets)
    return ",".join(parts)


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    """Split a signature header into its timestamp and v1 signatures."""
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t" and value.isdigit():
            timestamp = int(value)
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    secret: str,
    header: str,
    body: str,
    tolerance_seconds: int = SIGNATURE_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """
    Verify a signature header the way a receiver would.

    Rejects headers without a timestamp and timestamps outside the
    tolerance window (replay protection). Comparison is constant-time.
    """
    timestamp, signatures = parse_signature_header(header)
    if timestamp is None or not signatures:
        return False

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        return False

    expected = sign_payload(secret, timestamp, body)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)
