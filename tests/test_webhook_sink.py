from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from liquidation_relay.sinks.webhook import WebhookSink

WEBHOOK_URL = "https://discord.com/api/webhooks/123/token"


def _send(sink: WebhookSink, payload: dict[str, object]) -> bool:
    async def scenario() -> bool:
        try:
            return await sink.send(payload)
        finally:
            await sink.aclose()

    return asyncio.run(scenario())


def test_webhook_posts_json_and_reports_success() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code=204, request=request)

    sink = WebhookSink(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    assert _send(sink, {"embeds": [{"title": "LONG LIQUIDATION"}]}) is True
    assert len(requests) == 1
    assert requests[0].method == "POST"
    assert str(requests[0].url) == WEBHOOK_URL
    assert requests[0].headers["Content-Type"] == "application/json"
    assert json.loads(requests[0].content) == {"embeds": [{"title": "LONG LIQUIDATION"}]}


def test_webhook_logs_body_of_rejected_request_and_does_not_retry(caplog: pytest.LogCaptureFixture) -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(status_code=429, request=request, text='{"message": "You are being rate limited."}')

    sink = WebhookSink(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    with caplog.at_level(logging.ERROR):
        assert _send(sink, {"content": "hi"}) is False

    assert call_count == 1
    record = next(record for record in caplog.records if record.getMessage() == "Webhook rejected notification")
    assert record.status_code == 429  # type: ignore[attr-defined]
    assert record.body == '{"message": "You are being rate limited."}'  # type: ignore[attr-defined]


def test_webhook_transport_errors_are_reported_as_failure(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    sink = WebhookSink(WEBHOOK_URL, timeout_seconds=0.5, transport=httpx.MockTransport(handler))

    with caplog.at_level(logging.ERROR):
        assert _send(sink, {"content": "hi"}) is False

    assert any(getattr(record, "reason", None) == "ReadTimeout" for record in caplog.records)
