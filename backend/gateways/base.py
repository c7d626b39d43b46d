"""
Payment Gateway Adapter - common interface
==========================================
One workflow, swappable providers. Every adapter can:

- create an order for a registration
- fetch an order's status (pull)
- verify a client-submitted payment signature
- parse a provider webhook (push)

HTTP goes through a lazily created ``httpx.AsyncClient`` with a bounded
timeout. Upstream failures become ``GatewayRequestError`` carrying the
provider's payload; timeouts become the retryable ``GatewayTimeoutError``.
"""

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import httpx
import structlog

from config import EventConfig, GatewayConfig
from errors import (
    GatewayConfigError,
    GatewayRequestError,
    GatewayTimeoutError,
    InvalidSignatureError,
    ValidationError,
)
from schemas.registration import (
    GatewayOrder,
    GatewayProvider,
    OrderStatus,
    Registration,
    WebhookNotification,
)


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``order_id|payment_id``."""
    return hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


def normalize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def load_webhook_json(body: bytes) -> dict:
    try:
        payload = json.loads(body or b"{}")
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Webhook body is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return payload


class PaymentGateway(ABC):
    """Base class for payment gateway adapters."""

    provider: GatewayProvider

    def __init__(
        self,
        config: GatewayConfig,
        event: EventConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.event = event
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._logger = structlog.get_logger().bind(
            component="payment_gateway",
            provider=self.provider.value,
        )

    # -------------------------------------------------------------------------
    # Provider specifics
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def base_url(self) -> str:
        pass

    @property
    @abstractmethod
    def signing_secret(self) -> str:
        """Secret used for client payment signatures."""
        pass

    @abstractmethod
    def _missing_credentials(self) -> list[str]:
        pass

    @abstractmethod
    def _client_options(self) -> dict:
        """Headers/auth passed to ``httpx.AsyncClient``."""
        pass

    @abstractmethod
    def _error_message(self, payload: Any) -> str:
        pass

    @abstractmethod
    async def create_order(self, registration: Registration) -> GatewayOrder:
        pass

    @abstractmethod
    async def fetch_order_status(self, order_id: str) -> OrderStatus:
        pass

    @abstractmethod
    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        pass

    # -------------------------------------------------------------------------
    # Shared plumbing
    # -------------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return not self._missing_credentials()

    def ensure_configured(self) -> None:
        missing = self._missing_credentials()
        if missing:
            self._logger.error("gateway_not_configured", missing=missing)
            raise GatewayConfigError(
                f"{self.provider.value.title()} credentials not configured",
                details={"missing": missing},
            )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
                **self._client_options(),
            )
        return self._client

    async def _request(self, method: str, path: str, json_body: Optional[dict] = None) -> Any:
        self.ensure_configured()
        client = self._get_client()

        try:
            response = await client.request(method, path, json=json_body)
        except httpx.TimeoutException as e:
            self._logger.error("gateway_timeout", method=method, path=path, error=str(e))
            raise GatewayTimeoutError(
                "Payment gateway timed out, please retry",
                details={"path": path},
            )
        except httpx.HTTPError as e:
            self._logger.error("gateway_unreachable", method=method, path=path, error=str(e))
            raise GatewayRequestError(f"Payment gateway unreachable: {e}")

        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text}

        if response.is_error:
            message = self._error_message(payload)
            self._logger.error("gateway_request_failed",
                               method=method,
                               path=path,
                               status_code=response.status_code,
                               upstream=payload)
            raise GatewayRequestError(
                message,
                details=payload,
                upstream_status=response.status_code,
            )

        return payload

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        secret = self.signing_secret
        if not secret:
            raise GatewayConfigError(f"{self.provider.value.title()} secret not configured")

        expected = payment_signature(secret, order_id, payment_id)
        if not hmac.compare_digest(expected.encode(), (signature or "").encode()):
            self._logger.warning("payment_signature_invalid", order_id=order_id, payment_id=payment_id)
            raise InvalidSignatureError("Invalid signature")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
