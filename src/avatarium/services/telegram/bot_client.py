"""Telegram Bot API client for photo delivery."""

import json
from typing import Optional

import httpx

from avatarium.services.exceptions import DeliveryError

TELEGRAM_API_URL = "https://api.telegram.org"
CAPTION_LIMIT = 1024


class TelegramBotClient:
    """sendPhoto / sendMediaGroup over the Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_url: str = TELEGRAM_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = f"{api_url.rstrip('/')}/bot{bot_token}"
        self._transport = transport

    async def _call(self, method: str, payload: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"{method} network error: {e}") from e

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise DeliveryError(f"{method} returned {response.status_code}: {response.text}") from e

        if not data.get("ok"):
            raise DeliveryError(
                f"{method} failed ({data.get('error_code', response.status_code)}): "
                f"{data.get('description', 'unknown error')}"
            )
        return data

    async def send_photo(self, chat_id: int, photo_url: str, caption: Optional[str] = None) -> None:
        """Send a single photo.

        Raises:
            DeliveryError: Telegram rejected the request or was unreachable
        """
        payload: dict = {"chat_id": chat_id, "photo": photo_url}
        if caption:
            payload["caption"] = caption[:CAPTION_LIMIT]
        await self._call("sendPhoto", payload)

    async def send_media_group(
        self, chat_id: int, photo_urls: list[str], caption: Optional[str] = None
    ) -> None:
        """Send 2-10 photos as one album; the caption goes on the first item.

        Raises:
            DeliveryError: Telegram rejected the request or was unreachable
        """
        media = []
        for i, url in enumerate(photo_urls):
            item: dict = {"type": "photo", "media": url}
            if i == 0 and caption:
                item["caption"] = caption[:CAPTION_LIMIT]
            media.append(item)
        await self._call("sendMediaGroup", {"chat_id": chat_id, "media": media})
