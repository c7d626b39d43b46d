"""
Confirmation Notifier
=====================
Sends the two confirmation emails once a seat is paid for:

- registrant: thank-you note with event date, time and location
- admin: registrant contact details, payment id, order id, amount

Email is best-effort. A failed send is logged and reported as ``False``;
it never undoes the confirmed payment.

Transports:
- SendGridMailer (SendGrid v3 API)
- SmtpMailer (plain SMTP + STARTTLS, e.g. a Gmail app password)
- NullMailer (fails every send, used when mail is not configured)
"""

import asyncio
import html
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from config import EventConfig, MailConfig
from errors import NotificationError
from schemas.registration import Registration


# =============================================================================
# MAIL TRANSPORTS
# =============================================================================

class Mailer(ABC):
    """Outbound HTML mail transport"""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> None:
        pass


class SendGridMailer(Mailer):
    def __init__(self, api_key: str, sender: str):
        self.sender = sender
        self._client = SendGridAPIClient(api_key)

    def _send_sync(self, to: str, subject: str, html_body: str) -> None:
        message = Mail(
            from_email=self.sender,
            to_emails=to,
            subject=subject,
            html_content=html_body,
        )
        response = self._client.send(message)
        if response.status_code >= 400:
            raise NotificationError(
                f"SendGrid rejected message ({response.status_code})",
                details=str(response.body),
            )

    async def send(self, to: str, subject: str, html_body: str) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, html_body)


class SmtpMailer(Mailer):
    def __init__(self, host: str, port: int, username: str, password: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def _send_sync(self, to: str, subject: str, html_body: str) -> None:
        message = EmailMessage()
        message["From"] = self.username
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html_body: str) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, html_body)


class NullMailer(Mailer):
    """Drops every message and reports it as undelivered."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        raise NotificationError("Mail transport not configured", details={"to": to, "subject": subject})


def create_mailer(config: MailConfig) -> Mailer:
    log = structlog.get_logger().bind(component="mailer")
    if config.backend == "sendgrid" and config.sendgrid_api_key and config.sender:
        return SendGridMailer(config.sendgrid_api_key, config.sender)
    if config.backend == "smtp" and config.sender and config.password:
        return SmtpMailer(
            config.smtp_host,
            config.smtp_port,
            config.sender,
            config.password,
            timeout=config.timeout_seconds,
        )
    log.warning("mailer_disabled", backend=config.backend)
    return NullMailer()


# =============================================================================
# TEMPLATES
# =============================================================================

class EmailTemplates:
    """Fixed HTML templates. Registrant-supplied values are escaped."""

    PRIMARY_COLOR = "#7C3AED"

    def __init__(self, event: EventConfig):
        self.event = event

    def registrant(self, registration: Registration) -> tuple[str, str]:
        e = self.event
        subject = f"Your Registration is Confirmed! - {e.host} Masterclass"
        body = f"""
          <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; color: #333;">
            <h2 style="color: {self.PRIMARY_COLOR}; text-align: center;">Thank You for Registering!</h2>
            <p>Dear {html.escape(registration.full_name)},</p>
            <p>Your payment has been successfully processed and your spot in our <strong>{html.escape(e.name)}</strong> is confirmed!</p>

            <div style="background-color: #F5F3FF; padding: 15px; border-radius: 10px; margin: 20px 0;">
              <h3 style="color: {self.PRIMARY_COLOR}; margin-top: 0;">Event Details:</h3>
              <p><strong>Date:</strong> {html.escape(e.date)}</p>
              <p><strong>Time:</strong> {html.escape(e.time)}</p>
              <p><strong>Location:</strong> {html.escape(e.location)}</p>
              <p>We'll send you the joining link and any additional instructions 24 hours before the event.</p>
            </div>

            <p>If you have any questions before the masterclass, feel free to reply to this email.</p>

            <p style="margin-bottom: 0;">Warm regards,</p>
            <p style="margin-top: 5px;"><strong>{html.escape(e.host)}</strong></p>
            <p style="color: {self.PRIMARY_COLOR};">{html.escape(e.host_tagline)}</p>
          </div>
        """
        return subject, body

    def admin(self, registration: Registration, transaction_id: str) -> tuple[str, str]:
        e = self.event
        subject = f"New Registration - {e.host} Masterclass"
        body = f"""
          <div style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
            <h2 style="color: {self.PRIMARY_COLOR};">New Registration!</h2>
            <p>A new participant has registered for the {html.escape(e.name)}:</p>

            <ul>
              <li><strong>Full Name:</strong> {html.escape(registration.full_name)}</li>
              <li><strong>Email:</strong> {html.escape(registration.email)}</li>
              <li><strong>Phone:</strong> {html.escape(registration.phone)}</li>
              <li><strong>Reference ID:</strong> {html.escape(registration.reference_id)}</li>
              <li><strong>Payment ID:</strong> {html.escape(transaction_id)}</li>
              <li><strong>Order ID:</strong> {html.escape(registration.order_id or "-")}</li>
              <li><strong>Amount Paid:</strong> {html.escape(e.amount_display)}</li>
            </ul>
          </div>
        """
        return subject, body


# =============================================================================
# NOTIFIER
# =============================================================================

class ConfirmationNotifier:
    """Renders and sends the registrant + admin confirmation emails."""

    def __init__(
        self,
        mailer: Mailer,
        mail_config: MailConfig,
        event: EventConfig,
        templates: Optional[EmailTemplates] = None,
    ):
        self.mailer = mailer
        self.config = mail_config
        self.templates = templates or EmailTemplates(event)
        self._logger = structlog.get_logger().bind(component="confirmation_notifier")

    async def _deliver(self, kind: str, to: str, subject: str, body: str, reference_id: str) -> bool:
        log = self._logger.bind(reference_id=reference_id, kind=kind)
        if not to:
            log.error("notification_failed", error="no recipient address")
            return False
        try:
            await asyncio.wait_for(
                self.mailer.send(to, subject, body),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error("notification_failed", error="mail send timed out",
                      timeout_seconds=self.config.timeout_seconds)
            return False
        except Exception as e:
            log.error("notification_failed", error=str(e), error_type=type(e).__name__)
            return False

        log.info("notification_sent", to=to)
        return True

    async def notify(self, registration: Registration, transaction_id: str) -> bool:
        """Send both emails. Returns True only if both went out."""
        subject, body = self.templates.registrant(registration)
        user_sent = await self._deliver(
            "registrant", registration.email, subject, body, registration.reference_id
        )

        subject, body = self.templates.admin(registration, transaction_id)
        admin_sent = await self._deliver(
            "admin", self.config.admin_recipient, subject, body, registration.reference_id
        )

        return user_sent and admin_sent
