"""
Unit Tests for Webhook Signing and the HTTP Sender

Signatures are checked the way a receiver would check them; the sender runs
against httpx.MockTransport so no network is touched.
"""

import httpx
import pytest

from enhance_gateway.infrastructure.webhook import (
    WebhookSender,
    build_signature_header,
    parse_signature_header,
    sign_payload,
    verify_signature,
)

SECRET = "s" * 64
OLD_SECRET = "o" * 64
BODY = '{"event":"batch.completed","data":{}}'
TIMESTAMP = 1_760_000_000


@pytest.mark.unit
class TestSignature:
    def test_sign_is_hmac_over_timestamp_and_body(self):
        import hashlib
        import hmac

        expected = hmac.new(SECRET.encode(), f"{TIMESTAMP}.{BODY}".encode(), hashlib.sha256).hexdigest()
        assert sign_payload(SECRET, TIMESTAMP, BODY) == expected

    def test_header_format(self):
        header = build_signature_header([SECRET], TIMESTAMP, BODY)
        assert header == f"t={TIMESTAMP},v1={sign_payload(SECRET, TIMESTAMP, BODY)}"

    def test_header_carries_one_signature_per_secret(self):
        header = build_signature_header([SECRET, OLD_SECRET], TIMESTAMP, BODY)

        timestamp, signatures = parse_signature_header(header)
        assert timestamp == TIMESTAMP
        assert signatures == [sign_payload(SECRET, TIMESTAMP, BODY), sign_payload(OLD_SECRET, TIMESTAMP, BODY)]

    def test_verify_with_either_secret_during_rotation(self):
        header = build_signature_header([SECRET, OLD_SECRET], TIMESTAMP, BODY)

        assert verify_signature(SECRET, header, BODY, now=TIMESTAMP)
        assert verify_signature(OLD_SECRET, header, BODY, now=TIMESTAMP)
        assert not verify_signature("x" * 64, header, BODY, now=TIMESTAMP)

    def test_verify_rejects_tampered_body(self):
        header = build_signature_header([SECRET], TIMESTAMP, BODY)
        assert not verify_signature(SECRET, header, BODY + " ", now=TIMESTAMP)

    def test_verify_rejects_stale_timestamp(self):
        header = build_signature_header([SECRET], TIMESTAMP, BODY)

        assert verify_signature(SECRET, header, BODY, now=TIMESTAMP + 300)
        assert not verify_signature(SECRET, header, BODY, now=TIMESTAMP + 301)

    @pytest.mark.parametrize("header", ["", "v1=abc", "t=abc,v1=abc", f"t={TIMESTAMP}"])
    def test_verify_rejects_malformed_header(self, header):
        assert not verify_signature(SECRET, header, BODY, now=TIMESTAMP)


@pytest.mark.unit
class TestWebhookSender:
    @staticmethod
    def _sender(handler) -> WebhookSender:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WebhookSender(client, timeout_seconds=1.0, user_agent="Test-Agent/1.0")

    async def test_2xx_is_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content.decode()
            seen["headers"] = request.headers
            return httpx.Response(202, text="accepted")

        result = await self._sender(handler).send("https://hooks.example.com/in", BODY, {"X-Signature": "t=1,v1=a"})

        assert result.success is True
        assert result.status_code == 202
        assert result.response_body == "accepted"
        assert seen["body"] == BODY
        assert seen["headers"]["content-type"] == "application/json"
        assert seen["headers"]["user-agent"] == "Test-Agent/1.0"
        assert seen["headers"]["x-signature"] == "t=1,v1=a"

    async def test_non_2xx_is_failure(self):
        result = await self._sender(lambda request: httpx.Response(500, text="oops")).send(
            "https://hooks.example.com/in", BODY, {}
        )

        assert result.success is False
        assert result.status_code == 500
        assert result.error.startswith("HTTP 500")

    async def test_response_body_is_truncated(self):
        result = await self._sender(lambda request: httpx.Response(200, text="x" * 5000)).send(
            "https://hooks.example.com/in", BODY, {}
        )
        assert len(result.response_body) == 1000

    async def test_timeout_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await self._sender(handler).send("https://hooks.example.com/in", BODY, {})

        assert result.success is False
        assert result.status_code is None
        assert "timeout" in result.error.lower()

    async def test_connection_error_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await self._sender(handler).send("https://hooks.example.com/in", BODY, {})

        assert result.success is False
        assert result.error.startswith("Connection error")
