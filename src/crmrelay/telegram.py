import logging
import os

import httpx

from crmrelay.config import ConfigurationError

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramError(Exception):
    """A Bot API call failed."""


class TelegramClient:
    """Minimal Bot API transport: send, edit, answer callbacks.

    Keyboards are lists of button rows as built by ``crmrelay.keyboards``.
    Text is sent as Markdown; if Telegram can't parse it (stray ``_`` or ``*``
    in a company name) the call is repeated as plain text.
    """

    def __init__(
        self,
        token: str,
        base_url: str = TELEGRAM_API_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(base_url=f"{self.base_url}/bot{token}", timeout=timeout)

    @classmethod
    def from_env(cls, client: httpx.AsyncClient | None = None) -> "TelegramClient":
        token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        if not token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN not configured")
        return cls(token=token, client=client)

    async def close(self):
        await self._client.aclose()

    async def _call(self, method: str, payload: dict) -> dict:
        try:
            resp = await self._client.post(f"/{method}", json=payload)
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Telegram %s failed: %s", method, e)
            raise TelegramError(f"{method} failed: {e}") from e
        if not body.get("ok"):
            description = body.get("description", f"HTTP {resp.status_code}")
            raise TelegramError(f"{method} failed: {description}")
        return body

    async def _call_markdown(self, method: str, payload: dict) -> dict:
        try:
            return await self._call(method, {**payload, "parse_mode": "Markdown"})
        except TelegramError as e:
            if "can't parse entities" not in str(e):
                raise
            logger.warning("Markdown rejected for %s, resending as plain text", method)
            return await self._call(method, payload)

    async def send_message(self, chat_id: int, text: str, keyboard: list | None = None) -> int:
        """Send ``text`` and return the new message id."""
        payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        if keyboard:
            payload["reply_markup"] = {"inline_keyboard": keyboard}
        try:
            body = await self._call_markdown("sendMessage", payload)
        except TelegramError as e:
            logger.error("sendMessage to %s failed: %s", chat_id, e)
            raise
        return body["result"]["message_id"]

    async def edit_message(self, chat_id: int, message_id: int, text: str, keyboard: list | None = None) -> None:
        payload = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "disable_web_page_preview": True,
            "reply_markup": {"inline_keyboard": keyboard or []},
        }
        try:
            await self._call_markdown("editMessageText", payload)
        except TelegramError as e:
            if "message is not modified" in str(e):
                return
            logger.error("editMessageText %s/%s failed: %s", chat_id, message_id, e)
            raise

    async def answer_callback(self, callback_id: str, text: str = "") -> None:
        payload = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text
        try:
            await self._call("answerCallbackQuery", payload)
        except TelegramError as e:
            # Callback ids expire after ~15s; a late answer only loses the spinner.
            logger.warning("answerCallbackQuery failed: %s", e)
