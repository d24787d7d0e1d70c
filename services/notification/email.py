"""
services/notification/email.py
Email senders used by the notification dispatcher.
Production hands messages to Celery; delivery never blocks a request.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class EmailSender:
    def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class QueuedEmailSender(EmailSender):
    """Fire-and-forget: enqueue a Celery task and return."""

    def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        from tasks.notification_tasks import send_templated_email

        send_templated_email.delay(to, template, data)
        logger.debug(f"Queued '{template}' email to {to}")
