# services/__init__.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — SERVICES MODULE
# ============================================================================
# Registration workflow and confirmation emails
# ============================================================================

from services.notifier import (
    ConfirmationNotifier,
    EmailTemplates,
    Mailer,
    NullMailer,
    SendGridMailer,
    SmtpMailer,
    create_mailer,
)

from services.workflow import RegistrationWorkflow

__all__ = [
    # Notifier
    "ConfirmationNotifier",
    "EmailTemplates",
    "Mailer",
    "NullMailer",
    "SendGridMailer",
    "SmtpMailer",
    "create_mailer",
    # Workflow
    "RegistrationWorkflow",
]
