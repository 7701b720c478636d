"""Telegram notifications for heartbeat results."""

from __future__ import annotations

import html
import logging
import re
from typing import Any

import httpx

from ..logging import RedactTokenFilter
from .base import NotificationDeliveryError, NotificationMessage

logger = logging.getLogger(__name__)
logger.addFilter(RedactTokenFilter())

TELEGRAM_MESSAGE_MAX_CHARS = 4096
_PRE_OVERHEAD_CHARS = len("<pre></pre>")
_TOKEN_FORMAT_RE = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


def _html_escaped_len(ch: str) -> int:
    match ch:
        case "&":
            return 5  # &amp;
        case "<" | ">":
            return 4  # &lt; / &gt;
        case '"' | "'":
            return 6  # &quot; / &#x27;
        case _:
            return 1


def split_for_html_pre(text: str, *, max_escaped_chars: int) -> list[str]:
    """Split raw text into chunks that will fit inside `<pre>...</pre>`."""
    if not text:
        return []
    max_escaped_chars = max(1, int(max_escaped_chars))

    chunks: list[str] = []
    start = 0
    while start < len(text):
        escaped_len = 0
        end = start
        last_break: int | None = None

        while end < len(text):
            ch_escaped_len = _html_escaped_len(text[end])
            if escaped_len + ch_escaped_len > max_escaped_chars:
                break
            escaped_len += ch_escaped_len
            end += 1
            if text[end - 1] == "\n":
                last_break = end

        if end == start:
            end = start + 1
        elif end < len(text) and last_break is not None and last_break > start:
            end = last_break

        chunks.append(text[start:end])
        start = end

    return chunks


def format_notification_messages(message: NotificationMessage) -> list[str]:
    """Format a notification into one or more Telegram-sized HTML messages."""
    title = message.agent_id or "ymbot"
    parts = [f"<b>\U0001f514 {html.escape(title)}</b>"]
    if message.timestamp is not None:
        parts.append(html.escape(message.timestamp.strftime("%Y-%m-%d %H:%M")))
    messages = ["\n".join(parts)]

    text = message.text.strip()
    if text:
        max_escaped_chars = TELEGRAM_MESSAGE_MAX_CHARS - _PRE_OVERHEAD_CHARS
        messages.extend(
            f"<pre>{html.escape(chunk)}</pre>"
            for chunk in split_for_html_pre(text, max_escaped_chars=max_escaped_chars)
        )
    return messages


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"https://api.telegram.org/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, method: str, json_data: dict[str, Any]) -> Any | None:
        logger.debug("[telegram] request %s: %s", method, json_data)
        try:
            resp = await self._client.post(f"{self._base}/{method}", json=json_data)
        except httpx.HTTPError as e:
            logger.error("[telegram] network error method=%s: %s", method, e)
            return None

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "[telegram] http error method=%s status=%s: %s body=%r",
                method,
                resp.status_code,
                e,
                resp.text,
            )
            return None

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error(
                "[telegram] bad response method=%s status=%s: %s body=%r",
                method,
                resp.status_code,
                e,
                resp.text,
            )
            return None

        if not isinstance(payload, dict) or not payload.get("ok"):
            logger.error("[telegram] api error method=%s: %r", method, payload)
            return None

        logger.debug("[telegram] response %s: %s", method, payload)
        return payload.get("result")

    async def get_me(self) -> dict | None:
        return await self._post("getMe", {})  # type: ignore[return-value]

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        disable_notification: bool | None = None,
        parse_mode: str | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "link_preview_options": {"is_disabled": True},
        }
        if disable_notification is not None:
            params["disable_notification"] = disable_notification
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        return await self._post("sendMessage", params)  # type: ignore[return-value]


class TelegramNotifier:
    """Deliver notifications to one Telegram chat through the Bot API."""

    def __init__(
        self,
        *,
        bot_token: str,
        chat_id: int | str,
        timeout_s: float = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not _TOKEN_FORMAT_RE.match(bot_token or ""):
            raise ValueError("Telegram bot token is malformed")
        self._token = bot_token
        self.chat_id = chat_id
        self._timeout_s = timeout_s
        self._http_client = http_client
        self._client: TelegramClient | None = None

    async def start(self) -> None:
        if self._client is not None:
            return
        client = TelegramClient(
            self._token, timeout_s=self._timeout_s, client=self._http_client
        )
        me = await client.get_me()
        if me is None:
            await client.close()
            raise NotificationDeliveryError(
                "Telegram getMe failed; check the bot token"
            )
        self._client = client
        logger.info(
            "[telegram] notifier ready bot=%s chat_id=%s",
            me.get("username"),
            self.chat_id,
        )

    async def send(self, message: NotificationMessage) -> None:
        client = self._client
        if client is None:
            raise NotificationDeliveryError("Telegram notifier is not started")
        parts = format_notification_messages(message)
        for idx, text in enumerate(parts):
            result = await client.send_message(
                self.chat_id,
                text,
                disable_notification=True if idx > 0 else None,
                parse_mode="HTML",
            )
            if result is None:
                raise NotificationDeliveryError(
                    f"Telegram sendMessage failed for chat {self.chat_id} "
                    f"(part {idx + 1}/{len(parts)})"
                )
        logger.info(
            "[telegram] sent notification agent=%s parts=%s",
            message.agent_id,
            len(parts),
        )

    async def stop(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        await client.close()
        logger.debug("[telegram] notifier stopped")
