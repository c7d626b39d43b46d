"""
HTTP surface tests through FastAPI's TestClient
"""
import json

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from gateways.base import payment_signature
from gateways.cashfree import webhook_signature
from gateways.razorpay import webhook_signature as razorpay_webhook_signature


def _register(client, **overrides):
    body = {"fullName": "A", "email": "a@x.com", "phone": "1", **overrides}
    return client.post("/api/register", json=body)


def _order(client):
    reference_id = _register(client).json()["referenceId"]
    response = client.post("/api/create-payment-order", json={"referenceId": reference_id})
    assert response.status_code == 200
    return reference_id, response.json()["orderId"]


class TestRegister:

    def test_register(self, client):
        response = _register(client)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["referenceId"]
        assert data["amount"] == 99
        assert data["currency"] == "INR"
        assert data["paymentDetails"]["date"] == "April 19th"
        assert "X-Response-Time-Ms" in response.headers

    def test_snake_case_fields_accepted(self, client):
        response = client.post("/api/register", json={"full_name": "A", "email": "a@x.com", "phone": "1"})
        assert response.status_code == 200

    def test_numeric_phone_accepted(self, client, store):
        response = client.post("/api/register", json={"fullName": "A", "email": "a@x.com", "phone": 9876543210})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.portal.call(store.get, response.json()["referenceId"]).phone == "9876543210"

    def test_missing_field(self, client):
        response = _register(client, email="")
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "All fields are required"

    def test_malformed_body(self, client):
        response = client.post(
            "/api/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestCreatePaymentOrder:

    def test_cashfree_checkout_fields(self, client):
        reference_id = _register(client).json()["referenceId"]

        response = client.post("/api/create-payment-order", json={"referenceId": reference_id})

        data = response.json()
        assert data["success"] is True
        assert data["referenceId"] == reference_id
        assert data["orderId"].startswith(f"ORDER_{reference_id}_")
        assert data["paymentSessionId"] == f"session_{data['orderId']}"
        assert data["gateway"] == "cashfree"

    def test_razorpay_checkout_fields(self, razorpay_client):
        reference_id = _register(razorpay_client).json()["referenceId"]

        response = razorpay_client.post("/api/create-payment-order", json={"referenceId": reference_id})

        data = response.json()
        assert data["orderId"] == "order_TEST0001"
        assert data["key_id"] == "rzp_test_key"
        assert data["amount"] == 9900
        assert data["gateway"] == "razorpay"

    def test_unknown_reference(self, client):
        response = client.post("/api/create-payment-order", json={"referenceId": "nope"})
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_upstream_error_is_surfaced(self, client, fake_cashfree):
        reference_id = _register(client).json()["referenceId"]
        fake_cashfree.fail_create = (401, {"message": "authentication Failed", "code": "request_failed"})

        response = client.post("/api/create-payment-order", json={"referenceId": reference_id})

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["details"]["message"] == "authentication Failed"

    def test_missing_credentials(self, settings, workflow, client):
        settings.gateway.cashfree_app_id = ""
        reference_id = _register(client).json()["referenceId"]

        response = client.post("/api/create-payment-order", json={"referenceId": reference_id})

        assert response.status_code == 500
        assert response.json()["code"] == "gateway_not_configured"


class TestConfirmationFlow:

    def test_status_poll_end_to_end(self, client, fake_cashfree, mailer):
        reference_id, order_id = _order(client)

        pending = client.get("/api/check-payment-status", params={"orderId": order_id}).json()
        assert pending["orderStatus"] == "ACTIVE"
        assert pending["paymentConfirmed"] is False

        fake_cashfree.mark_paid(order_id)
        for _ in range(3):
            paid = client.get("/api/check-payment-status", params={"orderId": order_id}).json()
            assert paid["paymentConfirmed"] is True

        assert client.get("/api/check-payment", params={"reference_id": reference_id}).json() == {"success": True}
        assert order_id.startswith(f"ORDER_{reference_id}_")
        assert len(mailer.sent_to("a@x.com")) == 1
        assert len(mailer.sent_to("admin@example.com")) == 1

    def test_check_payment_status_requires_order_id(self, client):
        response = client.get("/api/check-payment-status")
        assert response.status_code == 400

    def test_verify_payment(self, client, mailer):
        reference_id, order_id = _order(client)
        signature = payment_signature("cf_test_secret", order_id, "pay_1")

        response = client.post("/api/verify-payment", json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": signature,
        })

        assert response.status_code == 200
        assert response.json() == {"success": True, "referenceId": reference_id}
        assert client.get("/api/check-payment", params={"payment_id": "pay_1"}).json()["success"] is True
        assert len(mailer.sent) == 2

    def test_verify_payment_bad_signature(self, client, mailer):
        reference_id, order_id = _order(client)

        response = client.post("/api/verify-payment", json={
            "orderId": order_id,
            "paymentId": "pay_1",
            "signature": "bad",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"
        assert client.get("/api/check-payment", params={"reference_id": reference_id}).json()["success"] is False
        assert mailer.sent == []

    def test_verify_payment_non_ascii_signature(self, client, mailer):
        reference_id, order_id = _order(client)

        response = client.post("/api/verify-payment", json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "ébad",
        })

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_signature"
        assert mailer.sent == []

    def test_verify_payment_unknown_order(self, client):
        signature = payment_signature("cf_test_secret", "ORDER_x", "pay_1")
        response = client.post("/api/verify-payment", json={
            "orderId": "ORDER_x",
            "paymentId": "pay_1",
            "signature": signature,
        })
        assert response.status_code == 404

    def test_confirm_payment(self, client, mailer):
        reference_id = _register(client).json()["referenceId"]

        response = client.post("/api/confirm-payment", json={
            "referenceId": reference_id,
            "transactionId": "txn_1",
        })

        assert response.json()["paymentConfirmed"] is True
        assert len(mailer.sent) == 2

    def test_confirm_payment_unknown(self, client):
        response = client.post("/api/confirm-payment", json={"referenceId": "nope", "transactionId": "txn_1"})
        assert response.status_code == 404

    def test_check_payment_unknown(self, client):
        assert client.get("/api/check-payment", params={"reference_id": "nope"}).json() == {"success": False}
        assert client.get("/api/check-payment").json() == {"success": False}


class TestWebhooks:

    @pytest.mark.parametrize("path", ["/api/payment-webhook", "/api/cashfree-webhook"])
    def test_cashfree_webhook_confirms(self, client, mailer, path):
        reference_id, order_id = _order(client)
        body = json.dumps({
            "type": "PAYMENT_SUCCESS_WEBHOOK",
            "data": {
                "order": {"order_id": order_id},
                "payment": {"cf_payment_id": 4242, "payment_status": "SUCCESS"},
            },
        }).encode()
        headers = {
            "Content-Type": "application/json",
            "x-webhook-timestamp": "1713500000",
            "x-webhook-signature": webhook_signature("cf_test_secret", "1713500000", body),
        }

        first = client.post(path, content=body, headers=headers)
        second = client.post(path, content=body, headers=headers)

        assert first.status_code == 200
        assert first.json()["status"] == "confirmed"
        assert second.json()["status"] == "already_confirmed"
        assert len(mailer.sent) == 2

    def test_razorpay_webhook(self, razorpay_client, mailer):
        reference_id, order_id = _order(razorpay_client)
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_R1", "order_id": order_id, "status": "captured"}}},
        }).encode()
        headers = {"X-Razorpay-Signature": razorpay_webhook_signature("rzp_webhook_secret", body)}

        response = razorpay_client.post("/api/razorpay-webhook", content=body, headers=headers)

        assert response.json()["status"] == "confirmed"
        assert razorpay_client.get("/api/check-payment", params={"payment_id": "pay_R1"}).json()["success"]

    def test_forged_webhook_still_200(self, client, mailer):
        reference_id, order_id = _order(client)
        body = json.dumps({
            "data": {"order": {"order_id": order_id}, "payment": {"payment_status": "SUCCESS"}},
        }).encode()

        response = client.post("/api/payment-webhook", content=body, headers={
            "x-webhook-timestamp": "1",
            "x-webhook-signature": "forged",
        })

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        assert client.get("/api/check-payment", params={"reference_id": reference_id}).json()["success"] is False
        assert mailer.sent == []

    def test_garbage_webhook_still_200(self, client):
        response = client.post("/api/payment-webhook", content=b"\xff\xfe")
        assert response.status_code == 200
        assert response.json()["success"] is True


class TestLiveness:

    def test_plain_routes(self, client):
        assert client.get("/api").json() == {"message": "API is running"}
        assert client.get("/status").json() == {"status": "Server is running"}

        root = client.get("/")
        assert root.status_code == 200
        assert root.text.startswith("Server is running")

    def test_health(self, client):
        _register(client)
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["gateway"] == "cashfree"
        assert data["gateway_configured"] is True
        assert data["registrations"] == 1
        assert data["confirmed"] == 0

    def test_cors_preflight(self, client):
        response = client.options("/api/register", headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
        })
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestUnexpectedErrors:

    def test_unexpected_failure_is_generic_500(self, settings, workflow):
        async def boom(*args, **kwargs):
            raise RuntimeError("store exploded")

        workflow.register = boom
        with TestClient(create_app(settings, workflow)) as client:
            response = client.post("/api/register", json={"fullName": "A", "email": "a@x.com", "phone": "1"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Something went wrong"}
