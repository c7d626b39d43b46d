# schemas/registration.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — REGISTRATION SCHEMAS
# ============================================================================
# Purpose: the registration record held by the store, the gateway result
# types, and the request bodies accepted by the HTTP surface.
#
# Request bodies default every field to "" so that a missing field reaches
# the workflow's own validation (400) instead of FastAPI's 422.
# ============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class GatewayProvider(str, Enum):
    CASHFREE = "cashfree"
    RAZORPAY = "razorpay"


class ConfirmationSource(str, Enum):
    """Which path observed the successful payment first."""
    STATUS_POLL = "status_poll"
    VERIFY = "verify"
    WEBHOOK = "webhook"
    LEGACY_CONFIRM = "legacy_confirm"


# ============================================================================
# SECTION 2: DOMAIN MODELS
# ============================================================================

class RegistrantInfo(BaseModel):
    full_name: str
    email: str
    phone: str


class Registration(BaseModel):
    """One registrant and the payment state of their seat."""
    reference_id: str
    full_name: str
    email: str
    phone: str
    created_at: datetime = Field(default_factory=_utcnow)

    order_id: Optional[str] = None
    order_ids: List[str] = Field(default_factory=list)

    payment_confirmed: bool = False
    transaction_id: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    confirmed_via: Optional[ConfirmationSource] = None

    def with_order(self, order_id: str) -> "Registration":
        return self.model_copy(update={
            "order_id": order_id,
            "order_ids": [*self.order_ids, order_id],
        })

    def as_confirmed(self, transaction_id: str, via: ConfirmationSource) -> "Registration":
        return self.model_copy(update={
            "payment_confirmed": True,
            "transaction_id": transaction_id,
            "confirmed_at": _utcnow(),
            "confirmed_via": via,
        })


class GatewayOrder(BaseModel):
    """Result of creating an order with the payment gateway."""
    order_id: str
    amount: int  # major units (rupees)
    currency: str
    provider: GatewayProvider
    checkout: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)


class OrderStatus(BaseModel):
    order_id: str
    status: str
    is_paid: bool
    transaction_id: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class WebhookNotification(BaseModel):
    """Normalized gateway push notification."""
    event_type: str
    order_id: Optional[str] = None
    is_paid: bool = False
    transaction_id: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# SECTION 3: REQUEST BODIES
# ============================================================================

class RequestBody(BaseModel):
    # Numeric JSON values (a phone number, a payment id) arrive as str
    model_config = ConfigDict(coerce_numbers_to_str=True)


class RegisterRequest(RequestBody):
    full_name: Optional[str] = Field(default="", validation_alias=AliasChoices("fullName", "full_name"))
    email: Optional[str] = ""
    phone: Optional[str] = ""


class CreateOrderRequest(RequestBody):
    reference_id: Optional[str] = Field(default="", validation_alias=AliasChoices("referenceId", "reference_id"))


class VerifyPaymentRequest(RequestBody):
    order_id: Optional[str] = Field(
        default="", validation_alias=AliasChoices("razorpay_order_id", "orderId", "order_id")
    )
    payment_id: Optional[str] = Field(
        default="", validation_alias=AliasChoices("razorpay_payment_id", "paymentId", "payment_id")
    )
    signature: Optional[str] = Field(
        default="", validation_alias=AliasChoices("razorpay_signature", "signature")
    )


class ConfirmPaymentRequest(RequestBody):
    reference_id: Optional[str] = Field(default="", validation_alias=AliasChoices("referenceId", "reference_id"))
    transaction_id: Optional[str] = Field(
        default="", validation_alias=AliasChoices("transactionId", "transaction_id")
    )
