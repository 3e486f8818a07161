import json
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from botlocal.database import get_db
from botlocal.models import Platform
from botlocal.routers import billing_webhook, telegram_webhook, whatsapp_webhook
from botlocal.services.billing_service import (
    BillingConfigurationError,
    BillingOutcome,
    BillingProcessingError,
    InvalidSignatureError,
)
from botlocal.services.idempotency_service import telegram_event_key
from botlocal.services.result import Result

TOKEN = "123456:bot-token"


@pytest.fixture
def container():
    pool = Mock()
    pool.submit.return_value = True
    return SimpleNamespace(
        worker_pool=pool,
        pipeline=Mock(),
        billing=Mock(),
        dispatcher=Mock(),
    )


@pytest.fixture
def client(container, db_session):
    app = FastAPI()
    app.include_router(telegram_webhook.router)
    app.include_router(whatsapp_webhook.router)
    app.include_router(billing_webhook.router)
    app.state.container = container
    app.dependency_overrides[get_db] = lambda: db_session
    return TestClient(app)


def _submitted_event(container):
    job = container.worker_pool.submit.call_args.args[1]
    return job.args[0]


class TestTelegramWebhook:
    def test_text_message_is_queued(self, client, container):
        update = {
            "update_id": 555,
            "message": {
                "message_id": 1,
                "date": 1700000000,
                "chat": {"id": 42, "type": "private"},
                "from": {"id": 42, "is_bot": False, "first_name": "Ana"},
                "text": "  Do you deliver?  ",
            },
        }

        response = client.post(f"/api/telegram/webhook/{TOKEN}", json=update)

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        event = _submitted_event(container)
        assert event.platform is Platform.TELEGRAM
        assert event.credential == TOKEN
        assert event.customer_id == "42"
        assert event.text == "Do you deliver?"
        assert event.event_key == telegram_event_key(TOKEN, 555)

    @pytest.mark.parametrize(
        "update",
        [
            {"update_id": 1, "edited_message": {"message_id": 1, "date": 1, "chat": {"id": 1, "type": "private"}}},
            {"update_id": 2, "message": {"message_id": 1, "date": 1, "chat": {"id": 1, "type": "private"}}},
            {
                "update_id": 3,
                "message": {
                    "message_id": 1,
                    "date": 1,
                    "chat": {"id": 1, "type": "private"},
                    "from": {"id": 9, "is_bot": True, "first_name": "OtherBot"},
                    "text": "beep",
                },
            },
            {"not": "an update"},
        ],
    )
    def test_non_text_updates_are_acknowledged(self, client, container, update):
        response = client.post(f"/api/telegram/webhook/{TOKEN}", json=update)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        container.worker_pool.submit.assert_not_called()

    def test_garbage_body_is_acknowledged(self, client, container):
        response = client.post(f"/api/telegram/webhook/{TOKEN}", content=b"\xff\xfe not json")
        assert response.status_code == 200
        container.worker_pool.submit.assert_not_called()

    def test_full_queue_returns_503(self, client, container):
        container.worker_pool.submit.return_value = False
        update = {
            "update_id": 556,
            "message": {"message_id": 2, "date": 1, "chat": {"id": 42, "type": "private"}, "text": "hi"},
        }

        response = client.post(f"/api/telegram/webhook/{TOKEN}", json=update)

        assert response.status_code == 503

    @patch("botlocal.routers.telegram_webhook.tenant_service.resolve")
    @patch("botlocal.routers.telegram_webhook.telegram_webhook_url")
    def test_status_reports_webhook_info(self, mock_url, mock_resolve, client, container):
        mock_url.return_value = f"https://bots.example.com/api/telegram/webhook/{TOKEN}"
        mock_resolve.return_value = SimpleNamespace(id="b-1", name="Cafe")
        container.dispatcher.telegram_webhook_info.return_value = Result.success(
            {
                "url": f"https://bots.example.com/api/telegram/webhook/{TOKEN}",
                "pending_update_count": 2,
                "last_error_message": None,
                "last_error_date": None,
            }
        )

        response = client.get(f"/api/telegram/status/{TOKEN}")

        assert response.status_code == 200
        body = response.json()
        assert body["url_matches"] is True
        assert body["pending_update_count"] == 2
        assert body["business_name"] == "Cafe"

    def test_status_upstream_failure(self, client, container):
        container.dispatcher.telegram_webhook_info.return_value = Result.failure("Unauthorized", "telegram_error")

        response = client.get(f"/api/telegram/status/{TOKEN}")

        assert response.status_code == 502


class TestWhatsAppWebhook:
    FORM = {"Body": "Hola, ¿abren hoy?", "From": "whatsapp:+15551112222", "To": "whatsapp:+15550009999", "MessageSid": "SM42"}

    def test_message_is_queued(self, client, container):
        response = client.post("/api/whatsapp/webhook", data=self.FORM)

        assert response.status_code == 200
        event = _submitted_event(container)
        assert event.platform is Platform.WHATSAPP
        assert event.credential == "+15550009999"
        assert event.customer_id == "+15551112222"
        assert event.event_key == "whatsapp:SM42"
        assert event.text == "Hola, ¿abren hoy?"

    def test_missing_fields_are_acknowledged(self, client, container):
        response = client.post("/api/whatsapp/webhook", data={"From": "whatsapp:+1555"})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        container.worker_pool.submit.assert_not_called()

    @patch("botlocal.routers.whatsapp_webhook.settings")
    def test_invalid_signature_is_forbidden(self, mock_settings, client, container):
        mock_settings.whatsapp_validate_signature = True
        container.dispatcher.whatsapp.validate_signature.return_value = False

        response = client.post("/api/whatsapp/webhook", data=self.FORM, headers={"X-Twilio-Signature": "bad"})

        assert response.status_code == 403
        container.worker_pool.submit.assert_not_called()

    @patch("botlocal.routers.whatsapp_webhook.settings")
    def test_valid_signature_is_accepted(self, mock_settings, client, container):
        mock_settings.whatsapp_validate_signature = True
        container.dispatcher.whatsapp.validate_signature.return_value = True

        response = client.post("/api/whatsapp/webhook", data=self.FORM, headers={"X-Twilio-Signature": "good"})

        assert response.status_code == 200
        params = container.dispatcher.whatsapp.validate_signature.call_args.args[1]
        assert params["MessageSid"] == "SM42"

    def test_full_queue_returns_503(self, client, container):
        container.worker_pool.submit.return_value = False
        response = client.post("/api/whatsapp/webhook", data=self.FORM)
        assert response.status_code == 503


class TestStripeWebhook:
    EVENT = {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}}

    def _post(self, client):
        return client.post(
            "/api/stripe/webhook",
            content=json.dumps(self.EVENT).encode(),
            headers={"Stripe-Signature": "t=1,v1=abc", "Content-Type": "application/json"},
        )

    def test_processed(self, client, container):
        container.billing.verify.return_value = self.EVENT
        container.billing.process.return_value = BillingOutcome("processed", "evt_1", "checkout.session.completed")

        response = self._post(client)

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        assert container.billing.verify.call_args.args == (json.dumps(self.EVENT).encode(), "t=1,v1=abc")

    def test_duplicate_is_200(self, client, container):
        container.billing.verify.return_value = self.EVENT
        container.billing.process.return_value = BillingOutcome("duplicate", "evt_1", "checkout.session.completed")

        assert self._post(client).status_code == 200

    def test_bad_signature_is_400(self, client, container):
        container.billing.verify.side_effect = InvalidSignatureError("no match")

        response = self._post(client)

        assert response.status_code == 400
        container.billing.process.assert_not_called()

    def test_in_flight_is_409(self, client, container):
        container.billing.verify.return_value = self.EVENT
        container.billing.process.return_value = BillingOutcome("in_flight", "evt_1", "checkout.session.completed")

        assert self._post(client).status_code == 409

    def test_processing_failure_is_500(self, client, container):
        container.billing.verify.return_value = self.EVENT
        container.billing.process.side_effect = BillingProcessingError("db down")

        assert self._post(client).status_code == 500

    def test_unconfigured_secret_is_500(self, client, container):
        container.billing.verify.side_effect = BillingConfigurationError("not set")

        assert self._post(client).status_code == 500
