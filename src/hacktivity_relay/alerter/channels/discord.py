"""Discord REST channel implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from hacktivity_relay.alerter.models import NotificationPayload

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://discord.com/api/v10"


class DiscordChannel:
    """Posts notifications to a Discord text channel as the bot user.

    Uses the REST ``create message`` endpoint with bot authorization,
    with client-side rate limiting and retry support.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        rate_limit_per_minute: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize Discord channel.

        Args:
            bot_token: Discord bot token.
            api_base: Discord REST API base URL.
            rate_limit_per_minute: Maximum messages per minute.
            max_retries: Maximum retry attempts on failure.
            retry_delay: Base delay between retries (exponential backoff).
            timeout: HTTP request timeout in seconds.
        """
        self.api_base = api_base.rstrip("/")
        self.rate_limit_per_minute = rate_limit_per_minute
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.name = "discord"

        self._headers = {"Authorization": f"Bot {bot_token}"}
        self._client: httpx.AsyncClient | None = None

        # Rate limiting state
        self._request_times: list[float] = []
        self._lock = asyncio.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self._headers)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _wait_for_rate_limit(self) -> None:
        """Wait if rate limit is exceeded."""
        async with self._lock:
            now = time.monotonic()
            # Remove requests older than 1 minute
            self._request_times = [t for t in self._request_times if now - t < 60]

            if len(self._request_times) >= self.rate_limit_per_minute:
                wait_time = 60 - (now - self._request_times[0])
                if wait_time > 0:
                    logger.debug(f"Discord rate limit hit, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.monotonic())

    def message_url(self, channel_id: str) -> str:
        """Build the create-message URL for a channel."""
        return f"{self.api_base}/channels/{channel_id}/messages"

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        """Seconds to wait after a 429, from the body or the Retry-After header."""
        try:
            return float(response.json().get("retry_after", 1.0))
        except (ValueError, AttributeError, TypeError):
            pass
        try:
            return float(response.headers.get("Retry-After", 1.0))
        except (ValueError, TypeError):
            return 1.0

    async def send(self, channel_id: str, payload: NotificationPayload) -> bool:
        """Send a notification to a Discord channel.

        Args:
            channel_id: Target channel ID.
            payload: Notification to deliver as an embed.

        Returns:
            True if delivery succeeded, False otherwise.
        """
        await self._wait_for_rate_limit()

        body = {"embeds": [payload.to_discord_embed()]}
        url = self.message_url(channel_id)
        client = self._get_client()

        for attempt in range(self.max_retries):
            try:
                response = await client.post(url, json=body)

                if 200 <= response.status_code < 300:
                    logger.info(f"Discord notification delivered to {channel_id}")
                    return True

                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    logger.warning(f"Discord rate limited, retry after {retry_after}s")
                    await asyncio.sleep(retry_after)
                    continue

                logger.error(
                    f"Discord send failed: {response.status_code} {response.text}"
                )
                if response.status_code in (401, 403, 404):
                    # Bad token, missing permission or unknown channel won't recover
                    return False

            except httpx.TimeoutException:
                logger.warning(f"Discord send timeout (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                logger.error(f"Discord send error: {e}")

            # Exponential backoff
            if attempt < self.max_retries - 1:
                delay = self.retry_delay * (2**attempt)
                await asyncio.sleep(delay)

        logger.error("Discord delivery failed after all retries")
        return False
