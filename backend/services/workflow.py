"""
Registration Workflow
=====================
The one piece of real logic in this service: take a registrant from
"registered" to "paid and notified".

    register ──► create_payment_order ──► (pay at gateway)
                                              │
          ┌──────────────┬──────────────┬─────┴──────────┐
      status poll    verify (client   webhook (gateway  legacy
      (pull)         signature)       push)             confirm
          └──────────────┴──────┬───────┴────────────────┘
                                ▼
                      confirmation transition
              (mark paid + confirmed set + two emails)

Whichever path observes the payment first performs the transition. The
transition is serialized per reference id (asyncio.Lock) and guarded by the
store's compare-and-set, so repeated polls, duplicate webhook deliveries and
concurrent paths send the emails at most once.
"""

import asyncio
import uuid
from typing import Mapping, Optional

import structlog

from errors import NotFoundError, ValidationError
from gateways import PaymentGateway
from schemas.registration import (
    ConfirmationSource,
    GatewayOrder,
    RegistrantInfo,
    Registration,
)
from services.notifier import ConfirmationNotifier
from storage.registration_store import IRegistrationStore


def _require(**fields: Optional[str]) -> dict[str, str]:
    """Strip every field; raise ValidationError naming the empty ones."""
    values = {name: (value or "").strip() for name, value in fields.items()}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ValidationError("All fields are required", details={"missing": missing})
    return values


class RegistrationWorkflow:
    """
    Orchestrates the registration store, payment gateway and notifier.

    Example:
        workflow = RegistrationWorkflow(store, gateway, notifier)
        record = await workflow.register("A", "a@x.com", "1")
        _, order = await workflow.create_payment_order(record.reference_id)
        # ... user pays ...
        await workflow.check_payment_status(order.order_id)
        await workflow.is_payment_confirmed(reference_id=record.reference_id)  # True
    """

    def __init__(
        self,
        store: IRegistrationStore,
        gateway: PaymentGateway,
        notifier: ConfirmationNotifier,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier

        # Per-registration locks for the confirmation transition
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_mutex = asyncio.Lock()

        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: Optional[str] = None):
        return self._base_logger.bind(
            component="registration_workflow",
            gateway=self.gateway.provider.value,
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    async def _get_lock(self, reference_id: str) -> asyncio.Lock:
        async with self._locks_mutex:
            if reference_id not in self._locks:
                self._locks[reference_id] = asyncio.Lock()
            return self._locks[reference_id]

    # =========================================================================
    # REGISTRATION + ORDER CREATION
    # =========================================================================

    async def register(
        self,
        full_name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
    ) -> Registration:
        values = _require(fullName=full_name, email=email, phone=phone)
        if "@" not in values["email"]:
            raise ValidationError("Invalid email address", details={"invalid": ["email"]})

        record = await self.store.create(RegistrantInfo(
            full_name=values["fullName"],
            email=values["email"],
            phone=values["phone"],
        ))

        self._get_logger().info("registration_received", reference_id=record.reference_id)
        return record

    async def create_payment_order(self, reference_id: Optional[str]) -> tuple[Registration, GatewayOrder]:
        reference_id = _require(referenceId=reference_id)["referenceId"]
        log = self._get_logger()

        record = await self.store.get(reference_id)
        if record is None:
            raise NotFoundError("Registration not found")

        order = await self.gateway.create_order(record)
        updated = await self.store.update(reference_id, lambda r: r.with_order(order.order_id))
        if updated is None:
            raise NotFoundError("Registration not found")

        log.info("payment_order_created",
                 reference_id=reference_id,
                 order_id=order.order_id,
                 amount=order.amount,
                 currency=order.currency)
        return updated, order

    # =========================================================================
    # CONFIRMATION PATHS
    # =========================================================================

    async def check_payment_status(self, order_id: Optional[str]) -> dict:
        """Pull path: ask the gateway, confirm if it says paid."""
        order_id = _require(orderId=order_id)["orderId"]
        log = self._get_logger()

        status = await self.gateway.fetch_order_status(order_id)
        reference_id = await self.store.find_by_order_id(order_id)

        if reference_id is None:
            log.warning("status_for_unknown_order", order_id=order_id, status=status.status)
        elif status.is_paid:
            await self._confirm(
                reference_id,
                status.transaction_id or order_id,
                ConfirmationSource.STATUS_POLL,
                log,
            )

        confirmed = bool(reference_id) and await self.store.is_confirmed(reference_id)
        return {
            "orderId": order_id,
            "orderStatus": status.status,
            "paymentConfirmed": confirmed,
            "referenceId": reference_id,
            "registered": reference_id is not None,
        }

    async def verify_payment(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> Registration:
        """Signature path: the checkout widget's HMAC proves the payment."""
        values = _require(orderId=order_id, paymentId=payment_id, signature=signature)
        log = self._get_logger()

        self.gateway.verify_payment_signature(values["orderId"], values["paymentId"], values["signature"])

        reference_id = await self.store.find_by_order_id(values["orderId"])
        if reference_id is None:
            log.warning("verified_payment_for_unknown_order", order_id=values["orderId"])
            raise NotFoundError("No registration found for this order")

        record, _ = await self._confirm(reference_id, values["paymentId"], ConfirmationSource.VERIFY, log)
        return record

    async def confirm_payment(
        self,
        reference_id: Optional[str],
        transaction_id: Optional[str],
    ) -> Registration:
        """Legacy path: trusts the caller's transaction id."""
        values = _require(referenceId=reference_id, transactionId=transaction_id)
        log = self._get_logger()

        if await self.store.get(values["referenceId"]) is None:
            raise NotFoundError("Registration not found")

        record, _ = await self._confirm(
            values["referenceId"],
            values["transactionId"],
            ConfirmationSource.LEGACY_CONFIRM,
            log,
        )
        return record

    async def handle_webhook(self, body: bytes, headers: Mapping[str, str]) -> dict:
        """
        Push path. Never raises: the gateway must always get a 200, or it
        keeps retrying. Outcome is reported in the returned dict and logs.
        """
        log = self._get_logger()
        try:
            notification = self.gateway.parse_webhook(body, headers)
            log.info("webhook_received",
                     event_type=notification.event_type,
                     order_id=notification.order_id,
                     is_paid=notification.is_paid)

            if not notification.is_paid or not notification.order_id:
                return {"status": "ignored", "event_type": notification.event_type}

            reference_id = await self.store.find_by_order_id(notification.order_id)
            if reference_id is None:
                log.warning("webhook_for_unknown_order", order_id=notification.order_id)
                return {"status": "unknown_order", "order_id": notification.order_id}

            _, transitioned = await self._confirm(
                reference_id,
                notification.transaction_id or notification.order_id,
                ConfirmationSource.WEBHOOK,
                log,
            )
            return {
                "status": "confirmed" if transitioned else "already_confirmed",
                "order_id": notification.order_id,
            }

        except Exception as e:
            log.error("webhook_processing_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            return {"status": "error", "error": str(e)}

    async def is_payment_confirmed(
        self,
        reference_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> bool:
        """Confirmed-set lookup by reference id or gateway payment id. Never raises."""
        try:
            if reference_id:
                return await self.store.is_confirmed(reference_id)
            if payment_id:
                found = await self.store.find_by_transaction_id(payment_id)
                return found is not None and await self.store.is_confirmed(found)
            return False
        except Exception as e:
            self._get_logger().error("confirmed_lookup_failed", error=str(e))
            return False

    # =========================================================================
    # CONFIRMATION TRANSITION
    # =========================================================================

    async def _confirm(
        self,
        reference_id: str,
        transaction_id: str,
        via: ConfirmationSource,
        log,
    ) -> tuple[Registration, bool]:
        """
        Mark paid and notify, at most once per registration.

        Returns the current record and whether this call performed the
        transition.
        """
        lock = await self._get_lock(reference_id)
        async with lock:
            transitioned = await self.store.mark_confirmed(reference_id, transaction_id, via)
            record = await self.store.get(reference_id)
            if record is None:
                raise NotFoundError("Registration not found")

            if not transitioned:
                log.info("payment_already_confirmed",
                         reference_id=reference_id,
                         via=via.value,
                         transaction_id=record.transaction_id)
                return record, False

            log.info("payment_confirmed",
                     reference_id=reference_id,
                     transaction_id=transaction_id,
                     via=via.value)

            try:
                sent = await self.notifier.notify(record, transaction_id)
            except Exception as e:
                log.error("confirmation_email_failed", reference_id=reference_id, error=str(e))
                sent = False
            if not sent:
                log.warning("confirmation_email_incomplete", reference_id=reference_id)

            return record, True

    async def stats(self) -> dict:
        return {
            "registrations": await self.store.count(),
            "confirmed": await self.store.confirmed_count(),
        }
