import json

import httpx
import pytest
import respx

from crmrelay.telegram import TelegramClient, TelegramError

TOKEN = "123:abc"
API = f"https://api.telegram.org/bot{TOKEN}"


def _ok(result=True):
    return httpx.Response(200, json={"ok": True, "result": result})


def _error(description, status=400):
    return httpx.Response(status, json={"ok": False, "description": description})


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_returns_message_id_and_sends_keyboard(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            route = respx.post(f"{API}/sendMessage").mock(return_value=_ok({"message_id": 42}))
            keyboard = [[{"text": "✅ Create", "callback_data": "confirm"}]]
            message_id = await client.send_message(7, "*hi*", keyboard)

            assert message_id == 42
            sent = json.loads(route.calls[0].request.content)
            assert sent["chat_id"] == 7
            assert sent["parse_mode"] == "Markdown"
            assert sent["reply_markup"] == {"inline_keyboard": keyboard}

    @pytest.mark.asyncio
    async def test_falls_back_to_plain_text(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            route = respx.post(f"{API}/sendMessage").mock(side_effect=[
                _error("Bad Request: can't parse entities: unclosed bold"),
                _ok({"message_id": 43}),
            ])
            message_id = await client.send_message(7, "Acme_Corp *weird")

            assert message_id == 43
            assert route.call_count == 2
            assert "parse_mode" not in json.loads(route.calls[1].request.content)

    @pytest.mark.asyncio
    async def test_other_errors_raise(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            respx.post(f"{API}/sendMessage").mock(return_value=_error("Forbidden: bot was blocked", 403))
            with pytest.raises(TelegramError, match="blocked"):
                await client.send_message(7, "hi")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            respx.post(f"{API}/sendMessage").mock(side_effect=httpx.ConnectTimeout("slow"))
            with pytest.raises(TelegramError):
                await client.send_message(7, "hi")


class TestEditMessage:
    @pytest.mark.asyncio
    async def test_edit_clears_keyboard_by_default(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            route = respx.post(f"{API}/editMessageText").mock(return_value=_ok())
            await client.edit_message(7, 42, "done")

            sent = json.loads(route.calls[0].request.content)
            assert sent["message_id"] == 42
            assert sent["reply_markup"] == {"inline_keyboard": []}

    @pytest.mark.asyncio
    async def test_not_modified_is_ignored(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            respx.post(f"{API}/editMessageText").mock(
                return_value=_error("Bad Request: message is not modified")
            )
            await client.edit_message(7, 42, "same")


class TestAnswerCallback:
    @pytest.mark.asyncio
    async def test_expired_callback_does_not_raise(self):
        with respx.mock:
            client = TelegramClient(TOKEN)
            route = respx.post(f"{API}/answerCallbackQuery").mock(
                return_value=_error("Bad Request: query is too old")
            )
            await client.answer_callback("cb-1")
            assert route.called
