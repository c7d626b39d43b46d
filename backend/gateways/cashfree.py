"""
Cashfree adapter
================
Session-based checkout: we name the order, Cashfree returns a
``payment_session_id`` the frontend SDK uses to collect payment. Completion
arrives by polling ``GET /orders/{id}`` or through the payment webhook.
"""

import base64
import hashlib
import hmac
import time
from typing import Any, Mapping, Optional

from errors import GatewayConfigError, GatewayRequestError, InvalidSignatureError
from gateways.base import PaymentGateway, load_webhook_json, normalize_headers
from schemas.registration import (
    GatewayOrder,
    GatewayProvider,
    OrderStatus,
    Registration,
    WebhookNotification,
)

PAID_STATUS = "PAID"
PAYMENT_SUCCESS = "SUCCESS"


def webhook_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of ``timestamp + raw body``."""
    digest = hmac.new(secret.encode(), timestamp.encode() + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class CashfreeGateway(PaymentGateway):
    provider = GatewayProvider.CASHFREE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._last_millis = 0

    @property
    def base_url(self) -> str:
        return self.config.cashfree_base_url

    @property
    def signing_secret(self) -> str:
        return self.config.cashfree_secret_key

    def _missing_credentials(self) -> list[str]:
        missing = []
        if not self.config.cashfree_app_id:
            missing.append("CASHFREE_APP_ID")
        if not self.config.cashfree_secret_key:
            missing.append("CASHFREE_SECRET_KEY")
        return missing

    def _client_options(self) -> dict:
        return {
            "headers": {
                "x-client-id": self.config.cashfree_app_id,
                "x-client-secret": self.config.cashfree_secret_key,
                "x-api-version": self.config.cashfree_api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        }

    def _error_message(self, payload: Any) -> str:
        if isinstance(payload, dict) and payload.get("message"):
            return f"Cashfree error: {payload['message']}"
        return "Cashfree request failed"

    def new_order_id(self, reference_id: str) -> str:
        # Millis strictly increase so two orders for one reference never collide
        millis = max(int(time.time() * 1000), self._last_millis + 1)
        self._last_millis = millis
        return f"ORDER_{reference_id}_{millis}"

    async def create_order(self, registration: Registration) -> GatewayOrder:
        order_id = self.new_order_id(registration.reference_id)
        body = {
            "order_id": order_id,
            "order_amount": float(self.event.amount),
            "order_currency": self.event.currency,
            "order_note": self.event.name,
            "customer_details": {
                "customer_id": f"cust_{registration.reference_id}",
                "customer_name": registration.full_name,
                "customer_email": registration.email,
                "customer_phone": registration.phone,
            },
        }
        if self.config.cashfree_return_url:
            body["order_meta"] = {
                "return_url": self.config.cashfree_return_url.replace("{order_id}", order_id),
            }

        payload = await self._request("POST", "/orders", json_body=body)

        session_id = payload.get("payment_session_id")
        if not session_id:
            raise GatewayRequestError("Cashfree response missing payment_session_id", details=payload)

        self._logger.info("order_created",
                          order_id=payload.get("order_id", order_id),
                          reference_id=registration.reference_id)

        return GatewayOrder(
            order_id=payload.get("order_id", order_id),
            amount=self.event.amount,
            currency=self.event.currency,
            provider=self.provider,
            checkout={
                "paymentSessionId": session_id,
                "environment": self.config.cashfree_env,
                "cfOrderId": payload.get("cf_order_id"),
            },
            raw=payload,
        )

    async def _successful_payment_id(self, order_id: str) -> Optional[str]:
        payments = await self._request("GET", f"/orders/{order_id}/payments")
        if not isinstance(payments, list):
            return None
        for payment in payments:
            if payment.get("payment_status") == PAYMENT_SUCCESS and payment.get("cf_payment_id") is not None:
                return str(payment["cf_payment_id"])
        return None

    async def fetch_order_status(self, order_id: str) -> OrderStatus:
        payload = await self._request("GET", f"/orders/{order_id}")
        status = str(payload.get("order_status", "UNKNOWN"))
        is_paid = status == PAID_STATUS

        transaction_id = None
        if is_paid:
            # The order is paid either way; the payments lookup only refines the id
            try:
                transaction_id = await self._successful_payment_id(order_id)
            except GatewayRequestError as e:
                self._logger.warning("payment_lookup_failed", order_id=order_id, error=e.message)
            if transaction_id is None:
                cf_order_id = payload.get("cf_order_id")
                transaction_id = str(cf_order_id) if cf_order_id is not None else order_id

        self._logger.info("order_status_fetched", order_id=order_id, status=status)
        return OrderStatus(
            order_id=order_id,
            status=status,
            is_paid=is_paid,
            transaction_id=transaction_id,
            raw=payload,
        )

    def _verify_webhook_signature(self, body: bytes, headers: Mapping[str, str]) -> None:
        secret = self.config.cashfree_secret_key
        if not secret:
            raise GatewayConfigError("Cashfree secret not configured for webhook verification")

        normalized = normalize_headers(headers)
        timestamp = normalized.get("x-webhook-timestamp", "")
        received = normalized.get("x-webhook-signature", "")
        if not timestamp or not received:
            raise InvalidSignatureError("Missing webhook signature headers")

        expected = webhook_signature(secret, timestamp, body)
        if not hmac.compare_digest(expected.encode(), received.encode()):
            raise InvalidSignatureError("Invalid webhook signature")

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        if self.config.verify_webhook_signature:
            self._verify_webhook_signature(body, headers)

        payload = load_webhook_json(body)
        data = payload.get("data") or {}
        order = data.get("order") or {}
        payment = data.get("payment") or {}

        cf_payment_id = payment.get("cf_payment_id")
        return WebhookNotification(
            event_type=str(payload.get("type", "unknown")),
            order_id=order.get("order_id"),
            is_paid=payment.get("payment_status") == PAYMENT_SUCCESS,
            transaction_id=str(cf_payment_id) if cf_payment_id is not None else None,
            raw=payload,
        )
