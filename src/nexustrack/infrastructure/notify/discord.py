# File: src/nexustrack/infrastructure/notify/discord.py
# Discord delivery: posts to channel webhooks and, with the bot token, creates
# webhooks, reads channel info and crossposts announcements.
#
# Status mapping:
#   400            -> PayloadRejectedError (caller may retry as plain text)
#   401/403/404    -> DestinationUnreachableError (terminal for the channel)
#   429/5xx/timeout-> DestinationTransientError (after bounded 429 retries)

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from nexustrack.config import settings
from nexustrack.domain.errors import (
    ConfigurationError,
    DestinationError,
    DestinationTransientError,
    DestinationUnreachableError,
    PayloadRejectedError,
)

log = logging.getLogger(__name__)

CROSSPOST_FAILED_NOTICE = (
    "-# Failed to crosspost the message. Please check the channel is an announcement "
    "channel and the bot has the `MANAGE_MESSAGES` permission."
)
WEBHOOK_LOST_NOTICE = (
    "-# The webhook for this channel is no longer available. No further updates will be posted. "
    "Please track an item again to set up tracking."
)

# Never sleep longer than this on a single 429; longer waits become a transient failure.
MAX_RETRY_AFTER_SECONDS = 30.0


class DiscordWebhookNotifier:
    """
    HTTP client for the Discord REST API.
    Webhook calls authenticate with the webhook token in the URL; everything
    else needs `DISCORD_BOT_TOKEN`.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        webhook_name: Optional[str] = None,
        max_rate_limit_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.DISCORD_BOT_TOKEN
        self.api_url = (api_url or settings.DISCORD_API_URL).rstrip("/")
        self.webhook_name = webhook_name or settings.WEBHOOK_NAME
        self.max_rate_limit_retries = max_rate_limit_retries
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout or settings.DISCORD_TIMEOUT,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    # --- Transport ---

    def _bot_headers(self) -> Dict[str, str]:
        if not self.bot_token:
            raise ConfigurationError("DISCORD_BOT_TOKEN is not set.")
        return {"Authorization": f"Bot {self.bot_token}"}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("message") or body)
        return str(body)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.json().get("retry_after", 1.0))
        except (ValueError, AttributeError):
            return float(response.headers.get("Retry-After", 1.0))

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Optional[Any]:
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                raise DestinationTransientError(f"{operation}: timed out") from e
            except httpx.TransportError as e:
                raise DestinationTransientError(f"{operation}: transport error ({e})") from e

            code = response.status_code
            if code == 429:
                wait = self._retry_after(response)
                if attempt < self.max_rate_limit_retries and wait <= MAX_RETRY_AFTER_SECONDS:
                    attempt += 1
                    log.warning(f"Discord rate limit on {operation}. Sleeping {wait:.2f}s (attempt {attempt})")
                    await asyncio.sleep(wait)
                    continue
                raise DestinationTransientError(f"{operation}: rate limited", status_code=code)
            if code < 300:
                if code == 204 or not response.content:
                    return None
                return response.json()

            message = self._error_message(response)
            if code == 400:
                raise PayloadRejectedError(f"{operation}: {message}", status_code=code)
            if code in (401, 403, 404):
                raise DestinationUnreachableError(f"{operation}: {message}", status_code=code)
            if code >= 500:
                raise DestinationTransientError(f"{operation}: HTTP {code}", status_code=code)
            raise DestinationError(f"{operation}: HTTP {code} {message}", status_code=code)

    # --- Webhooks ---

    async def resolve_webhook(self, webhook_id: str, webhook_token: str) -> Dict[str, Any]:
        """Fetches the webhook; raises `DestinationUnreachableError` if it is gone."""
        return await self._request("GET", f"/webhooks/{webhook_id}/{webhook_token}", "resolve webhook")

    async def post(
        self,
        webhook_id: str,
        webhook_token: str,
        content: Optional[str] = None,
        embeds: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Posts one message and returns the created message object."""
        payload: Dict[str, Any] = {"allowed_mentions": {"parse": ["roles", "users", "everyone"]}}
        if content:
            payload["content"] = content[:2000]
        if embeds:
            payload["embeds"] = embeds
        return await self._request(
            "POST",
            f"/webhooks/{webhook_id}/{webhook_token}",
            "post webhook message",
            params={"wait": "true"},
            json=payload,
        )

    async def create_webhook(self, channel_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/channels/{channel_id}/webhooks",
            "create webhook",
            headers=self._bot_headers(),
            json={"name": self.webhook_name},
        )

    # --- Bot-authenticated helpers ---

    async def channel_info(self, channel_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/channels/{channel_id}", "get channel", headers=self._bot_headers())

    async def crosspost(self, channel_id: str, message_id: str) -> None:
        await self._request(
            "POST",
            f"/channels/{channel_id}/messages/{message_id}/crosspost",
            "crosspost",
            headers=self._bot_headers(),
        )

    async def send_channel_message(self, channel_id: str, content: str) -> Optional[Dict[str, Any]]:
        return await self._request(
            "POST",
            f"/channels/{channel_id}/messages",
            "send channel message",
            headers=self._bot_headers(),
            json={"content": content[:2000]},
        )
