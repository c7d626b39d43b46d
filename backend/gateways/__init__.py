# Payment gateway adapters
# ========================
# One interface, two providers. Pick with PAYMENT_GATEWAY.

from typing import Optional

import httpx

from config import EventConfig, GatewayConfig
from errors import GatewayConfigError
from gateways.base import PaymentGateway, payment_signature
from gateways.cashfree import CashfreeGateway
from gateways.razorpay import RazorpayGateway

GATEWAYS: dict[str, type[PaymentGateway]] = {
    "cashfree": CashfreeGateway,
    "razorpay": RazorpayGateway,
}


def create_gateway(
    config: GatewayConfig,
    event: EventConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentGateway:
    gateway_class = GATEWAYS.get(config.provider)
    if gateway_class is None:
        raise GatewayConfigError(
            f"Unknown payment gateway: {config.provider}",
            details={"supported": sorted(GATEWAYS)},
        )
    return gateway_class(config, event, transport=transport)


__all__ = [
    "PaymentGateway",
    "CashfreeGateway",
    "RazorpayGateway",
    "GATEWAYS",
    "create_gateway",
    "payment_signature",
]
