# tests/test_discord_notifier.py
import json

import httpx
import pytest

from nexustrack.domain.errors import (
    ConfigurationError,
    DestinationError,
    DestinationTransientError,
    DestinationUnreachableError,
    PayloadRejectedError,
)
from nexustrack.infrastructure.notify.discord import DiscordWebhookNotifier


def _notifier(handler, bot_token="bot-token") -> DiscordWebhookNotifier:
    return DiscordWebhookNotifier(
        bot_token=bot_token,
        api_url="https://discord.test/api/v10",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_post_sends_embeds_and_returns_message():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "555", "channel_id": "200"})

    notifier = _notifier(handler)
    message = await notifier.post("300", "tok", content="x" * 2500, embeds=[{"title": "New mod"}])
    await notifier.aclose()

    assert message["id"] == "555"
    assert captured["url"].path == "/api/v10/webhooks/300/tok"
    assert captured["url"].params["wait"] == "true"
    assert len(captured["body"]["content"]) == 2000
    assert captured["body"]["embeds"] == [{"title": "New mod"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (400, PayloadRejectedError),
        (401, DestinationUnreachableError),
        (403, DestinationUnreachableError),
        (404, DestinationUnreachableError),
        (502, DestinationTransientError),
        (409, DestinationError),
    ],
)
async def test_status_codes_are_classified(status, error):
    notifier = _notifier(lambda request: httpx.Response(status, json={"message": "nope", "code": 0}))
    with pytest.raises(error) as excinfo:
        await notifier.post("300", "tok", content="hi")
    await notifier.aclose()
    assert excinfo.value.status_code == status


@pytest.mark.asyncio
async def test_rate_limit_is_retried_after_the_advertised_wait():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, json={"message": "You are being rate limited.", "retry_after": 0.01})
        return httpx.Response(200, json={"id": "1"})

    notifier = _notifier(handler)
    message = await notifier.post("300", "tok", content="hi")
    await notifier.aclose()

    assert message == {"id": "1"}
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_persistent_rate_limit_becomes_transient():
    notifier = _notifier(lambda request: httpx.Response(429, json={"retry_after": 0.01}))
    with pytest.raises(DestinationTransientError):
        await notifier.post("300", "tok", content="hi")
    await notifier.aclose()


@pytest.mark.asyncio
async def test_bot_calls_carry_the_bot_token():
    seen = {}

    def handler(request):
        seen[request.url.path] = request.headers.get("Authorization")
        if request.url.path.endswith("/crosspost"):
            return httpx.Response(204)
        return httpx.Response(200, json={"id": "301", "token": "new-token"})

    notifier = _notifier(handler)
    webhook = await notifier.create_webhook("200")
    assert await notifier.crosspost("200", "555") is None
    await notifier.aclose()

    assert webhook["token"] == "new-token"
    assert seen["/api/v10/channels/200/webhooks"] == "Bot bot-token"
    assert seen["/api/v10/channels/200/messages/555/crosspost"] == "Bot bot-token"


@pytest.mark.asyncio
async def test_bot_calls_without_token_fail_fast():
    notifier = _notifier(lambda request: httpx.Response(200, json={}), bot_token="")
    with pytest.raises(ConfigurationError):
        await notifier.channel_info("200")
    await notifier.aclose()


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    notifier = _notifier(handler)
    with pytest.raises(DestinationTransientError):
        await notifier.resolve_webhook("300", "tok")
    await notifier.aclose()
