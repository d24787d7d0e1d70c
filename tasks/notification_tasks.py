"""
tasks/notification_tasks.py
Celery tasks for transactional email.

Usage from a route:
    from tasks.notification_tasks import send_templated_email
    send_templated_email.delay("partner@example.com", "partner_verified", {...})
"""

import logging
from html import escape

import resend
from pybreaker import CircuitBreakerError

from config.settings import settings
from shared.utils.resilience import circuit_breaker_manager
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

EMAIL_SERVICE = "resend"


# ── Templates ──────────────────────────────────────────────────────────────────

TEMPLATES = {
    "welcome": {
        "subject": "Welcome to Partner Marketplace!",
        "body": (
            "<h2>Welcome, {username}!</h2>"
            "<p>Thank you for joining Partner Marketplace as a {role}.</p>"
            '<p><a href="{frontend_url}/dashboard">Get started</a></p>'
        ),
    },
    "partner_verified": {
        "subject": "Your Partner Account Has Been Verified!",
        "body": (
            "<h2>Congratulations, {username}!</h2>"
            "<p>Your partner account for <strong>{company_name}</strong> has been verified "
            "and is now visible to clients.</p>"
            "<p>{notes}</p>"
            '<p><a href="{frontend_url}/partner/dashboard">Open your partner dashboard</a></p>'
        ),
    },
    "partner_rejected": {
        "subject": "Partner Application Update Required",
        "body": (
            "<h2>Hello {username},</h2>"
            "<p>We reviewed your application for <strong>{company_name}</strong> and need "
            "a few updates before we can approve it.</p>"
            "<p><strong>Reason:</strong> {reason}</p>"
            "<p>{notes}</p>"
            '<p><a href="{frontend_url}/partner/onboarding">Update your application</a></p>'
        ),
    },
    "document_status": {
        "subject": "Document {status_text}: {document_name}",
        "body": (
            "<h2>Document {status_text}</h2>"
            "<p>Hello {username}, your document <strong>{document_name}</strong> "
            "has been {status}.</p>"
            "<p>{reason}</p>"
            "<p>{notes}</p>"
        ),
    },
}


def _render(template: str, **kwargs) -> str:
    """Simple string template renderer. Values are HTML-escaped."""
    for key, value in kwargs.items():
        template = template.replace(f"{{{key}}}", escape(str(value)) if value is not None else "")
    return template


def render_email(template: str, data: dict) -> tuple[str, str]:
    """Returns (subject, html). Unknown templates raise KeyError."""
    tmpl = TEMPLATES[template]
    context = {"frontend_url": settings.FRONTEND_URL, **data}
    if template == "document_status":
        context.setdefault(
            "status_text",
            "Approved" if data.get("status") == "approved" else "Requires Update",
        )
    return _render(tmpl["subject"], **context), _render(tmpl["body"], **context)


def _send_email(to_email: str, subject: str, html_body: str) -> None:
    """Send one email via Resend. Raises on provider failure."""
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send({
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    })


# ── Tasks ─────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_templated_email(self, to_email: str, template: str, data: dict):
    """Render and send a transactional email with retry on failure."""
    try:
        subject, html_body = render_email(template, data)
    except KeyError:
        logger.error(f"Unknown email template '{template}', dropping message to {to_email}")
        return False

    breaker = circuit_breaker_manager.get_breaker(EMAIL_SERVICE)
    try:
        breaker.call(_send_email, to_email, subject, html_body)
    except CircuitBreakerError as e:
        logger.warning(f"Email circuit open, deferring '{template}' to {to_email}")
        raise self.retry(exc=e, countdown=settings.EMAIL_CIRCUIT_RESET_SECONDS)
    except Exception as e:
        logger.warning(f"Email send failed ({template} -> {to_email}): {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

    logger.info(f"Sent '{template}' email to {to_email}")
    return True
