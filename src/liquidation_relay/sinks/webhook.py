from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class WebhookSink:
    """Deliver rendered notifications to a single webhook endpoint.

    Delivery is best-effort: every failure is logged and reported as ``False``,
    nothing is retried.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, payload: dict[str, Any]) -> bool:
        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "Webhook delivery failed",
                extra={"reason": exc.__class__.__name__, "detail": str(exc)},
            )
            return False

        if not response.is_success:
            logger.error(
                "Webhook rejected notification",
                extra={"status_code": response.status_code, "body": response.text},
            )
            return False

        logger.info("Liquidation alert delivered", extra={"status_code": response.status_code})
        return True
