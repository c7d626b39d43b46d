"""
Razorpay adapter
================
Razorpay names the order itself. The checkout widget returns
``razorpay_payment_id`` + ``razorpay_signature`` to the browser, which posts
them to ``/api/verify-payment``. Webhooks are signed with a separate secret.
"""

import hashlib
import hmac
import time
from typing import Any, Mapping, Optional

from config import RAZORPAY_BASE_URL
from errors import GatewayConfigError, GatewayRequestError, InvalidSignatureError
from gateways.base import PaymentGateway, load_webhook_json, normalize_headers
from schemas.registration import (
    GatewayOrder,
    GatewayProvider,
    OrderStatus,
    Registration,
    WebhookNotification,
)

PAID_STATUS = "paid"
CAPTURED = "captured"
PAID_EVENTS = {"order.paid", "payment.captured"}

# Checkout widget layout: UPI first for better app redirects
CHECKOUT_DISPLAY_CONFIG = {
    "display": {
        "blocks": {
            "upi": {"name": "Pay via UPI", "instruments": [{"method": "upi"}]},
            "card": {"name": "Pay via Card", "instruments": [{"method": "card"}]},
            "netbanking": {"name": "Pay via Netbanking", "instruments": [{"method": "netbanking"}]},
            "wallet": {"name": "Pay via Wallet", "instruments": [{"method": "wallet"}]},
        },
        "sequence": ["block.upi", "block.card", "block.netbanking", "block.wallet"],
        "preferences": {"show_default_blocks": False},
    }
}


def webhook_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class RazorpayGateway(PaymentGateway):
    provider = GatewayProvider.RAZORPAY

    @property
    def base_url(self) -> str:
        return RAZORPAY_BASE_URL

    @property
    def signing_secret(self) -> str:
        return self.config.razorpay_secret

    def _missing_credentials(self) -> list[str]:
        missing = []
        if not self.config.razorpay_key_id:
            missing.append("RAZORPAY_KEY_ID")
        if not self.config.razorpay_secret:
            missing.append("RAZORPAY_SECRET")
        return missing

    def _client_options(self) -> dict:
        return {"auth": (self.config.razorpay_key_id, self.config.razorpay_secret)}

    def _error_message(self, payload: Any) -> str:
        if isinstance(payload, dict):
            error = payload.get("error") or {}
            if isinstance(error, dict) and error.get("description"):
                return f"Razorpay error: {error['description']}"
        return "Razorpay request failed"

    async def create_order(self, registration: Registration) -> GatewayOrder:
        amount_paise = self.event.amount * 100
        receipt = f"rcpt_{registration.reference_id}_{int(time.time() * 1000)}"[:40]
        payload = await self._request("POST", "/orders", json_body={
            "amount": amount_paise,
            "currency": self.event.currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": {
                "reference_id": registration.reference_id,
                "email": registration.email,
            },
        })

        order_id = payload.get("id")
        if not order_id:
            raise GatewayRequestError("Razorpay response missing order id", details=payload)

        self._logger.info("order_created", order_id=order_id, reference_id=registration.reference_id)

        return GatewayOrder(
            order_id=order_id,
            amount=self.event.amount,
            currency=self.event.currency,
            provider=self.provider,
            checkout={
                "key_id": self.config.razorpay_key_id,
                "amount": payload.get("amount", amount_paise),
                "currency": payload.get("currency", self.event.currency),
                "name": self.event.host,
                "description": self.event.name,
                "prefill": {
                    "name": registration.full_name,
                    "email": registration.email,
                    "contact": registration.phone,
                },
                "config": CHECKOUT_DISPLAY_CONFIG,
            },
            raw=payload,
        )

    async def _captured_payment_id(self, order_id: str) -> Optional[str]:
        payments = await self._request("GET", f"/orders/{order_id}/payments")
        for item in (payments or {}).get("items", []):
            if item.get("status") == CAPTURED and item.get("id"):
                return item["id"]
        return None

    async def fetch_order_status(self, order_id: str) -> OrderStatus:
        payload = await self._request("GET", f"/orders/{order_id}")
        status = str(payload.get("status", "unknown"))
        is_paid = status == PAID_STATUS

        transaction_id = None
        if is_paid:
            try:
                transaction_id = await self._captured_payment_id(order_id)
            except GatewayRequestError as e:
                self._logger.warning("payment_lookup_failed", order_id=order_id, error=e.message)
            transaction_id = transaction_id or order_id

        self._logger.info("order_status_fetched", order_id=order_id, status=status)
        return OrderStatus(
            order_id=order_id,
            status=status,
            is_paid=is_paid,
            transaction_id=transaction_id,
            raw=payload,
        )

    def _verify_webhook_signature(self, body: bytes, headers: Mapping[str, str]) -> None:
        secret = self.config.razorpay_webhook_secret
        if not secret:
            raise GatewayConfigError("RAZORPAY_WEBHOOK_SECRET not configured")

        received = normalize_headers(headers).get("x-razorpay-signature", "")
        if not received:
            raise InvalidSignatureError("Missing webhook signature header")
        if not hmac.compare_digest(webhook_signature(secret, body).encode(), received.encode()):
            raise InvalidSignatureError("Invalid webhook signature")

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        if self.config.verify_webhook_signature:
            self._verify_webhook_signature(body, headers)

        payload = load_webhook_json(body)
        event_type = str(payload.get("event", "unknown"))
        entities = payload.get("payload") or {}
        payment = (entities.get("payment") or {}).get("entity") or {}
        order = (entities.get("order") or {}).get("entity") or {}

        is_paid = event_type in PAID_EVENTS and (
            payment.get("status") == CAPTURED or order.get("status") == PAID_STATUS
        )
        return WebhookNotification(
            event_type=event_type,
            order_id=order.get("id") or payment.get("order_id"),
            is_paid=is_paid,
            transaction_id=payment.get("id"),
            raw=payload,
        )
