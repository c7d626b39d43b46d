"""
Pytest configuration and shared fixtures.

Gateways talk to fake Cashfree / Razorpay APIs through ``httpx.MockTransport``;
mail goes to a recording mailer so tests can count what was sent.
"""
import json
import re
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from config import EventConfig, GatewayConfig, MailConfig, ServerConfig, Settings
from gateways import create_gateway
from services.notifier import ConfirmationNotifier, Mailer
from services.workflow import RegistrationWorkflow
from storage.registration_store import InMemoryRegistrationStore


# -- Fakes ---------------------------------------------------------------------


class RecordingMailer(Mailer):
    """Keeps every message instead of sending it"""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise RuntimeError("mail relay unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html_body})

    def sent_to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]


class FakeCashfree:
    """Minimal in-memory Cashfree PG API"""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.payments: dict[str, list] = {}
        self.requests: list[httpx.Request] = []
        self.fail_create: Optional[tuple[int, dict]] = None
        self.fail_payments = False

    def mark_paid(self, order_id: str, cf_payment_id: int = 5114910001) -> None:
        self.orders[order_id]["order_status"] = "PAID"
        self.payments[order_id] = [
            {"cf_payment_id": 5114910000, "payment_status": "FAILED"},
            {"cf_payment_id": cf_payment_id, "payment_status": "SUCCESS"},
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            if self.fail_create:
                status, payload = self.fail_create
                return httpx.Response(status, json=payload)
            body = json.loads(request.content)
            order_id = body["order_id"]
            self.orders[order_id] = {
                "order_id": order_id,
                "cf_order_id": 2149460581,
                "order_status": "ACTIVE",
                "order_amount": body["order_amount"],
            }
            return httpx.Response(200, json={
                **self.orders[order_id],
                "payment_session_id": f"session_{order_id}",
            })

        match = re.match(r".*/orders/([^/]+)/payments$", path)
        if match:
            if self.fail_payments:
                return httpx.Response(503, json={"message": "service unavailable"})
            return httpx.Response(200, json=self.payments.get(match.group(1), []))

        match = re.match(r".*/orders/([^/]+)$", path)
        if match:
            order = self.orders.get(match.group(1))
            if order is None:
                return httpx.Response(404, json={
                    "message": "order not found",
                    "code": "order_not_found",
                    "type": "invalid_request_error",
                })
            return httpx.Response(200, json=order)

        return httpx.Response(404, json={"message": "no such route"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeRazorpay:
    """Minimal in-memory Razorpay orders API"""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.payments: dict[str, list] = {}
        self.requests: list[httpx.Request] = []
        self._next = 1
        self.fail_payments = False

    def mark_paid(self, order_id: str, payment_id: str = "pay_TEST0001") -> None:
        self.orders[order_id]["status"] = "paid"
        self.payments[order_id] = [{"id": payment_id, "status": "captured"}]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            body = json.loads(request.content)
            order_id = f"order_TEST{self._next:04d}"
            self._next += 1
            self.orders[order_id] = {
                "id": order_id,
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            }
            return httpx.Response(200, json=self.orders[order_id])

        match = re.match(r".*/orders/([^/]+)/payments$", path)
        if match:
            if self.fail_payments:
                return httpx.Response(502, json={"error": {"description": "upstream unavailable"}})
            return httpx.Response(200, json={"items": self.payments.get(match.group(1), [])})

        match = re.match(r".*/orders/([^/]+)$", path)
        if match:
            order = self.orders.get(match.group(1))
            if order is None:
                return httpx.Response(400, json={
                    "error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"},
                })
            return httpx.Response(200, json=order)

        return httpx.Response(404, json={"error": {"description": "no such route"}})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# -- Fixtures ------------------------------------------------------------------


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        provider="cashfree",
        cashfree_app_id="TEST_APP_ID",
        cashfree_secret_key="cf_test_secret",
        razorpay_key_id="rzp_test_key",
        razorpay_secret="rzp_test_secret",
        razorpay_webhook_secret="rzp_webhook_secret",
        timeout_seconds=2.0,
    )


@pytest.fixture
def settings(gateway_config):
    return Settings(
        gateway=gateway_config,
        mail=MailConfig(
            backend="none",
            sender="host@example.com",
            admin_email="admin@example.com",
            timeout_seconds=1.0,
        ),
        event=EventConfig(),
        server=ServerConfig(env="test", cors_origins=["http://localhost:5173"]),
    )


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notifier(mailer, settings):
    return ConfirmationNotifier(mailer, settings.mail, settings.event)


@pytest.fixture
def store():
    return InMemoryRegistrationStore()


@pytest.fixture
def fake_cashfree():
    return FakeCashfree()


@pytest.fixture
def fake_razorpay():
    return FakeRazorpay()


@pytest.fixture
def cashfree_gateway(settings, fake_cashfree):
    return create_gateway(settings.gateway, settings.event, transport=fake_cashfree.transport)


@pytest.fixture
def razorpay_gateway(settings, fake_razorpay):
    settings.gateway.provider = "razorpay"
    return create_gateway(settings.gateway, settings.event, transport=fake_razorpay.transport)


@pytest.fixture
def workflow(store, cashfree_gateway, notifier):
    return RegistrationWorkflow(store, cashfree_gateway, notifier)


@pytest.fixture
def razorpay_workflow(store, razorpay_gateway, notifier):
    return RegistrationWorkflow(store, razorpay_gateway, notifier)


@pytest.fixture
def client(settings, workflow):
    with TestClient(create_app(settings, workflow)) as test_client:
        yield test_client


@pytest.fixture
def razorpay_client(settings, razorpay_workflow):
    with TestClient(create_app(settings, razorpay_workflow)) as test_client:
        yield test_client
