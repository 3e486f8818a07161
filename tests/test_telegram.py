from unittest.mock import MagicMock, patch

import httpx

from botlocal.schemas.telegram import TelegramChat, TelegramMessage, TelegramUpdate, TelegramUser
from botlocal.services.telegram_service import TelegramService


class TestTelegramSchemas:
    def test_telegram_user(self):
        user = TelegramUser(id=123456, first_name="Ana", last_name="Lopez", username="ana_l")
        assert user.id == 123456
        assert user.is_bot is False

    def test_message_reads_from_alias(self):
        msg = TelegramMessage.model_validate(
            {
                "message_id": 100,
                "date": 1702000000,
                "chat": {"id": 42, "type": "private"},
                "from": {"id": 42, "first_name": "Ana"},
                "text": "Hi",
            }
        )
        assert msg.from_user.first_name == "Ana"
        assert msg.chat.type == "private"

    def test_unknown_fields_are_ignored(self):
        update = TelegramUpdate.model_validate(
            {
                "update_id": 1,
                "message": {
                    "message_id": 1,
                    "date": 1,
                    "chat": {"id": 1, "type": "private"},
                    "text": "hi",
                    "entities": [{"type": "bold", "offset": 0, "length": 2}],
                },
                "my_chat_member": {},
            }
        )
        assert update.text_message.text == "hi"

    def test_text_message_skips_blank_text(self):
        update = TelegramUpdate(
            update_id=2,
            message=TelegramMessage(message_id=1, date=1, chat=TelegramChat(id=1, type="private"), text="   "),
        )
        assert update.text_message is None

    def test_text_message_skips_bots(self):
        update = TelegramUpdate(
            update_id=3,
            message=TelegramMessage(
                message_id=1,
                date=1,
                chat=TelegramChat(id=1, type="private"),
                text="beep",
                from_user=TelegramUser(id=5, is_bot=True, first_name="Bot"),
            ),
        )
        assert update.text_message is None

    def test_edited_messages_are_not_answered(self):
        update = TelegramUpdate(
            update_id=4,
            edited_message=TelegramMessage(message_id=1, date=1, chat=TelegramChat(id=1, type="private"), text="typo"),
        )
        assert update.text_message is None


class TestTelegramService:
    def _client(self, mock_client_cls):
        client = MagicMock()
        mock_client_cls.return_value.__enter__.return_value = client
        return client

    @patch("botlocal.services.telegram_service.httpx.Client")
    def test_send_message(self, mock_client_cls):
        client = self._client(mock_client_cls)
        client.post.return_value.json.return_value = {"ok": True, "result": {"message_id": 9}}

        result = TelegramService("111:abc").send_message("42", "Hello")

        assert result["ok"] is True
        url = client.post.call_args.args[0]
        assert url == "https://api.telegram.org/bot111:abc/sendMessage"
        assert client.post.call_args.kwargs["json"] == {"chat_id": "42", "text": "Hello"}

    @patch("botlocal.services.telegram_service.httpx.Client")
    def test_set_webhook_only_subscribes_to_messages(self, mock_client_cls):
        client = self._client(mock_client_cls)
        client.post.return_value.json.return_value = {"ok": True, "result": True}

        TelegramService("111:abc").set_webhook("https://bots.example.com/hook", drop_pending_updates=True)

        assert client.post.call_args.kwargs["json"] == {
            "url": "https://bots.example.com/hook",
            "allowed_updates": ["message"],
            "drop_pending_updates": True,
        }

    @patch("botlocal.services.telegram_service.httpx.Client")
    def test_transport_error_is_returned_not_raised(self, mock_client_cls):
        client = self._client(mock_client_cls)
        client.post.side_effect = httpx.ConnectTimeout("timed out")

        result = TelegramService("111:abc").get_webhook_info()

        assert result["ok"] is False
        assert "timed out" in result["error"]

    @patch("botlocal.services.telegram_service.httpx.Client")
    def test_non_json_body_is_returned_not_raised(self, mock_client_cls):
        client = self._client(mock_client_cls)
        client.post.return_value.json.side_effect = ValueError("Expecting value")

        result = TelegramService("111:abc").send_message("42", "Hello")

        assert result["ok"] is False
