# config.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — CONFIGURATION
# ============================================================================
# Everything is read from the environment (optionally seeded from a .env
# file). Each section is a dataclass so tests can build one directly.
# ============================================================================

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ============================================================================
# SECTION 1: PAYMENT GATEWAY
# ============================================================================

CASHFREE_BASE_URLS = {
    "sandbox": "https://sandbox.cashfree.com/pg",
    "production": "https://api.cashfree.com/pg",
}

RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"


@dataclass
class GatewayConfig:
    """Credentials and endpoints for the active payment gateway."""
    provider: str = "cashfree"

    # Cashfree
    cashfree_app_id: str = ""
    cashfree_secret_key: str = ""
    cashfree_env: str = "sandbox"
    cashfree_api_version: str = "2023-08-01"
    cashfree_return_url: Optional[str] = None

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_secret: str = ""
    razorpay_webhook_secret: str = ""

    verify_webhook_signature: bool = True
    timeout_seconds: float = 5.0

    @property
    def cashfree_base_url(self) -> str:
        return CASHFREE_BASE_URLS.get(self.cashfree_env, CASHFREE_BASE_URLS["sandbox"])

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            provider=os.getenv("PAYMENT_GATEWAY", "cashfree").strip().lower(),
            cashfree_app_id=os.getenv("CASHFREE_APP_ID", ""),
            cashfree_secret_key=os.getenv("CASHFREE_SECRET_KEY", ""),
            cashfree_env=os.getenv("CASHFREE_ENV", "sandbox").strip().lower(),
            cashfree_api_version=os.getenv("CASHFREE_API_VERSION", "2023-08-01"),
            cashfree_return_url=os.getenv("CASHFREE_RETURN_URL") or None,
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            razorpay_secret=os.getenv("RAZORPAY_SECRET", ""),
            razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET", ""),
            verify_webhook_signature=_env_bool("VERIFY_WEBHOOK_SIGNATURE", True),
            timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "5.0")),
        )


# ============================================================================
# SECTION 2: MAIL
# ============================================================================

@dataclass
class MailConfig:
    backend: str = "smtp"  # smtp | sendgrid | none
    sender: str = ""
    password: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    sendgrid_api_key: str = ""
    admin_email: str = ""
    timeout_seconds: float = 10.0

    @property
    def admin_recipient(self) -> str:
        # Admin copy goes to the sending account unless overridden
        return self.admin_email or self.sender

    @classmethod
    def from_env(cls) -> "MailConfig":
        return cls(
            backend=os.getenv("MAIL_BACKEND", "smtp").strip().lower(),
            sender=os.getenv("EMAIL_USER", ""),
            password=os.getenv("EMAIL_PASSWORD", ""),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
            admin_email=os.getenv("ADMIN_EMAIL", ""),
            timeout_seconds=float(os.getenv("MAIL_TIMEOUT_SECONDS", "10.0")),
        )


# ============================================================================
# SECTION 3: EVENT
# ============================================================================

@dataclass
class EventConfig:
    """What is being sold. Amount is in major units (rupees)."""
    name: str = "Life-Changing 3-Hour Masterclass"
    host: str = "Inspiring Shereen"
    host_tagline: str = "Life Coach | Shaping Lives With Holistic Success"
    date: str = "April 19th"
    time: str = "11:30 AM"
    location: str = "Live on Zoom (Interactive + Reflective Exercises)"
    amount: int = 99
    currency: str = "INR"

    @property
    def amount_display(self) -> str:
        symbol = "₹" if self.currency == "INR" else f"{self.currency} "
        return f"{symbol}{self.amount}"

    @classmethod
    def from_env(cls) -> "EventConfig":
        defaults = cls()
        return cls(
            name=os.getenv("EVENT_NAME", defaults.name),
            host=os.getenv("EVENT_HOST", defaults.host),
            host_tagline=os.getenv("EVENT_HOST_TAGLINE", defaults.host_tagline),
            date=os.getenv("EVENT_DATE", defaults.date),
            time=os.getenv("EVENT_TIME", defaults.time),
            location=os.getenv("EVENT_LOCATION", defaults.location),
            amount=int(os.getenv("EVENT_AMOUNT", str(defaults.amount))),
            currency=os.getenv("EVENT_CURRENCY", defaults.currency).upper(),
        )


# ============================================================================
# SECTION 4: SERVER
# ============================================================================

@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 5000
    env: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = field(
        default_factory=lambda: ["https://inspiring-shereen.vercel.app", "http://localhost:5173"]
    )

    @property
    def debug(self) -> bool:
        return self.env == "development"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "5000")),
            env=os.getenv("ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=_env_list(
                "CORS_ORIGINS",
                "https://inspiring-shereen.vercel.app,http://localhost:5173",
            ),
        )


@dataclass
class Settings:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    event: EventConfig = field(default_factory=EventConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gateway=GatewayConfig.from_env(),
            mail=MailConfig.from_env(),
            event=EventConfig.from_env(),
            server=ServerConfig.from_env(),
        )


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Seed the environment from .env (without overriding) and build Settings."""
    load_dotenv(dotenv_path, override=False)
    return Settings.from_env()


# ============================================================================
# SECTION 5: STRUCTURED LOGGING
# ============================================================================

def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog once for the whole process."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
