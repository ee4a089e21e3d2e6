"""
Outbound Webhook HTTP Sender

One POST per call over a shared httpx.AsyncClient. A 2xx response is a
success; any other status, a timeout or a transport error is a failure
reported in the result. Nothing here raises for delivery failures: the
retry engine decides what a failure means.
"""

import time
from dataclasses import dataclass

import httpx

from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)

# Response bodies kept for the delivery log are truncated to this size
MAX_RESPONSE_BODY_CHARS = 1000


@dataclass(frozen=True)
class DeliveryAttemptResult:
    success: bool
    status_code: int | None = None
    response_body: str | None = None
    duration_ms: int = 0
    error: str | None = None


class WebhookSender:
    """
    Posts signed webhook bodies.

    Usage:
        async with httpx.AsyncClient() as client:
            sender = WebhookSender(client, timeout_seconds=10)
            result = await sender.send(url, body, headers)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 10.0,
        user_agent: str = "EnhanceGateway-Webhooks/1.0",
    ):
        self._client = client
        self._timeout = timeout_seconds
        self._user_agent = user_agent

    async def send(self, url: str, body: str, headers: dict[str, str]) -> DeliveryAttemptResult:
        request_headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            **headers,
        }
        start_time = time.perf_counter()

        try:
            response = await self._client.post(
                url, content=body.encode("utf-8"), headers=request_headers, timeout=self._timeout
            )
        except httpx.TimeoutException:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning("Webhook delivery timeout", url=url, timeout_seconds=self._timeout)
            return DeliveryAttemptResult(
                success=False,
                duration_ms=duration_ms,
                error=f"Request timeout after {self._timeout}s",
            )
        except httpx.HTTPError as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning("Webhook delivery connection error", url=url, error=str(e))
            return DeliveryAttemptResult(
                success=False,
                duration_ms=duration_ms,
                error=f"Connection error: {e}",
            )

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        response_body = response.text[:MAX_RESPONSE_BODY_CHARS]

        if 200 <= response.status_code < 300:
            logger.info("Webhook delivered", url=url, status_code=response.status_code, duration_ms=duration_ms)
            return DeliveryAttemptResult(
                success=True,
                status_code=response.status_code,
                response_body=response_body,
                duration_ms=duration_ms,
            )

        logger.warning(
            "Webhook delivery failed with HTTP error",
            url=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return DeliveryAttemptResult(
            success=False,
            status_code=response.status_code,
            response_body=response_body,
            duration_ms=duration_ms,
            error=f"HTTP {response.status_code}: {response.reason_phrase}",
        )
