# api/server.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — FASTAPI SERVER
# ============================================================================
# Thin HTTP surface over RegistrationWorkflow: input parsing, error mapping,
# CORS, timing header, liveness routes.
# ============================================================================

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from config import Settings, configure_logging, load_settings
from errors import RegistrationError
from gateways import create_gateway
from schemas.registration import (
    ConfirmPaymentRequest,
    CreateOrderRequest,
    RegisterRequest,
    VerifyPaymentRequest,
)
from services.notifier import ConfirmationNotifier, create_mailer
from services.workflow import RegistrationWorkflow
from storage.registration_store import InMemoryRegistrationStore

VERSION = "1.0.0"

logger = structlog.get_logger(component="server")


# ============================================================================
# WIRING
# ============================================================================

def build_workflow(settings: Settings) -> RegistrationWorkflow:
    """Default object graph: in-memory store + configured gateway + mailer."""
    gateway = create_gateway(settings.gateway, settings.event)
    notifier = ConfirmationNotifier(
        create_mailer(settings.mail),
        settings.mail,
        settings.event,
    )
    return RegistrationWorkflow(InMemoryRegistrationStore(), gateway, notifier)


def endpoint(name: str):
    """Endpoint boundary: domain errors pass through to their handler,
    anything else becomes a generic 500."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except RegistrationError:
                raise
            except Exception as e:
                logger.error("endpoint_failed", endpoint=name, error=str(e), exc_info=True)
                return JSONResponse(
                    status_code=500,
                    content={"success": False, "error": "Something went wrong"},
                )
        return wrapper
    return decorator


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    workflow: Optional[RegistrationWorkflow] = None,
) -> FastAPI:
    settings = settings or load_settings()
    workflow = workflow or build_workflow(settings)
    start_time = datetime.now(timezone.utc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("server_starting",
                    version=VERSION,
                    gateway=workflow.gateway.provider.value,
                    gateway_configured=workflow.gateway.is_configured)
        if not workflow.gateway.is_configured:
            logger.warning("gateway_credentials_missing", gateway=workflow.gateway.provider.value)
        yield
        await workflow.gateway.aclose()
        logger.info("server_stopped")

    app = FastAPI(
        title="Masterclass Registration API",
        description="Registration, payment and confirmation backend for a paid online event",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.workflow = workflow

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------------
    # Middleware + error mapping
    # ------------------------------------------------------------------------

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    @app.exception_handler(RegistrationError)
    async def registration_error_handler(request: Request, exc: RegistrationError):
        log = logger.bind(path=request.url.path, code=exc.code)
        if exc.status_code >= 500:
            log.error("request_failed", error=exc.message, details=exc.details)
        else:
            log.info("request_rejected", error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.info("request_malformed", path=request.url.path)
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request body", "code": "validation_error"},
        )

    # ------------------------------------------------------------------------
    # Registration + payment
    # ------------------------------------------------------------------------

    @app.post("/api/register")
    @endpoint("register")
    async def register(body: RegisterRequest):
        record = await workflow.register(body.full_name, body.email, body.phone)
        event = settings.event
        return {
            "success": True,
            "referenceId": record.reference_id,
            "amount": event.amount,
            "currency": event.currency,
            "paymentDetails": {
                "amount": event.amount,
                "currency": event.currency,
                "eventName": event.name,
                "date": event.date,
                "time": event.time,
                "gateway": workflow.gateway.provider.value,
            },
        }

    @app.post("/api/create-payment-order")
    @endpoint("create_payment_order")
    async def create_payment_order(body: CreateOrderRequest):
        record, order = await workflow.create_payment_order(body.reference_id)
        return {
            "success": True,
            "orderId": order.order_id,
            "referenceId": record.reference_id,
            "amount": order.amount,
            "currency": order.currency,
            "gateway": order.provider.value,
            **order.checkout,
        }

    @app.get("/api/check-payment-status")
    @endpoint("check_payment_status")
    async def check_payment_status(order_id: Optional[str] = Query(default=None, alias="orderId")):
        result = await workflow.check_payment_status(order_id)
        return {"success": True, **result}

    @app.post("/api/verify-payment")
    @endpoint("verify_payment")
    async def verify_payment(body: VerifyPaymentRequest):
        record = await workflow.verify_payment(body.order_id, body.payment_id, body.signature)
        return {"success": True, "referenceId": record.reference_id}

    @app.post("/api/confirm-payment")
    @endpoint("confirm_payment")
    async def confirm_payment(body: ConfirmPaymentRequest):
        record = await workflow.confirm_payment(body.reference_id, body.transaction_id)
        return {
            "success": True,
            "referenceId": record.reference_id,
            "paymentConfirmed": record.payment_confirmed,
        }

    @app.get("/api/check-payment")
    async def check_payment(
        reference_id: Optional[str] = Query(default=None),
        payment_id: Optional[str] = Query(default=None),
    ):
        confirmed = await workflow.is_payment_confirmed(reference_id=reference_id, payment_id=payment_id)
        return {"success": confirmed}

    # ------------------------------------------------------------------------
    # Gateway webhooks: always 200
    # ------------------------------------------------------------------------

    async def _receive_webhook(request: Request) -> JSONResponse:
        try:
            body = await request.body()
            result = await workflow.handle_webhook(body, request.headers)
        except Exception as e:
            logger.error("webhook_endpoint_failed", error=str(e), exc_info=True)
            result = {"status": "error"}
        return JSONResponse(status_code=200, content={"success": True, "status": result.get("status")})

    @app.post("/api/payment-webhook")
    async def payment_webhook(request: Request):
        return await _receive_webhook(request)

    @app.post("/api/cashfree-webhook")
    async def cashfree_webhook(request: Request):
        return await _receive_webhook(request)

    @app.post("/api/razorpay-webhook")
    async def razorpay_webhook(request: Request):
        return await _receive_webhook(request)

    # ------------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------------

    @app.get("/api")
    async def api_root():
        return {"message": "API is running"}

    @app.get("/status")
    async def status():
        return {"status": "Server is running"}

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Server is running. API available at /api endpoints."

    @app.get("/health")
    async def health_check():
        uptime = (datetime.now(timezone.utc) - start_time).total_seconds()
        stats = await workflow.stats()
        return {
            "status": "healthy",
            "version": VERSION,
            "gateway": workflow.gateway.provider.value,
            "gateway_configured": workflow.gateway.is_configured,
            "uptime_seconds": uptime,
            **stats,
        }

    return app


# ============================================================================
# MAIN
# ============================================================================

settings = load_settings()
configure_logging(settings.server.log_level, json_output=not settings.server.debug)
app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
        log_level=settings.server.log_level.lower(),
    )
