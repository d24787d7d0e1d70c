"""
services/notification/dispatcher.py
In-process publish/subscribe for account notifications.

One NotificationDispatcher lives on app.state for the lifetime of the
process; listeners are plain callables keyed by account id. Delivery is
synchronous and a failing listener never blocks the others.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request

from services.notification.email import EmailSender
from shared.models.models import PartnerDocument, PartnerProfile, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    type: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: str = "normal"
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        return payload


Listener = Callable[[Notification], Any]


class NotificationDispatcher:
    def __init__(self, email_sender: Optional[EmailSender] = None):
        self._subscribers: Dict[str, List[Listener]] = defaultdict(list)
        self.email_sender = email_sender

    # ── Registry ──────────────────────────────────────────────

    def subscribe(self, account_id, listener: Listener) -> None:
        self._subscribers[str(account_id)].append(listener)

    def unsubscribe(self, account_id, listener: Listener) -> None:
        key = str(account_id)
        listeners = self._subscribers.get(key)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._subscribers[key]

    def subscriber_count(self, account_id=None) -> int:
        if account_id is not None:
            return len(self._subscribers.get(str(account_id), []))
        return sum(len(listeners) for listeners in self._subscribers.values())

    def close(self) -> None:
        """Drop every subscription. Called at shutdown."""
        self._subscribers.clear()

    # ── Delivery ──────────────────────────────────────────────

    def _deliver(self, account_id: str, listeners: List[Listener], event: Notification) -> int:
        delivered = 0
        for listener in list(listeners):
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception(f"Notification listener failed for account {account_id}")
        return delivered

    def notify(self, account_id, event: Notification) -> int:
        """Deliver to every listener of one account. Returns the number delivered."""
        key = str(account_id)
        return self._deliver(key, self._subscribers.get(key, []), event)

    def notify_admins(self, event: Notification) -> int:
        # No role registry at this layer: every current subscriber receives it
        delivered = 0
        for account_id, listeners in list(self._subscribers.items()):
            delivered += self._deliver(account_id, listeners, event)
        return delivered

    def send_email(self, to: Optional[str], template: str, data: Dict[str, Any]) -> bool:
        """Best-effort email. Failures are logged, never raised."""
        if not to or self.email_sender is None:
            return False
        try:
            self.email_sender.send(to, template, data)
            return True
        except Exception as e:
            logger.warning(f"Failed to queue '{template}' email to {to}: {e}")
            return False

    # ── Domain events ─────────────────────────────────────────

    def partner_submitted_for_verification(self, profile: PartnerProfile) -> int:
        username = profile.user.username if profile.user else None
        return self.notify_admins(Notification(
            type="partner_verification_pending",
            title="New Partner Verification Request",
            message=f"{username} ({profile.company_name}) has submitted their profile for verification",
            data={
                "partner_id": str(profile.id),
                "partner_name": username,
                "company_name": profile.company_name,
                "submitted_at": (profile.submitted_at or utcnow()).isoformat(),
            },
            priority="high",
        ))

    def document_status_updated(
        self,
        profile: PartnerProfile,
        document: PartnerDocument,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        status = document.status.value
        delivered = self.notify(profile.user_id, Notification(
            type="document_status_updated",
            title=f"Document {status}",
            message=f'Your document "{document.name}" has been {status}',
            data={
                "document_id": str(document.id),
                "document_name": document.name,
                "status": status,
                "reason": reason,
                "notes": notes,
            },
            priority="high" if status == "rejected" else "normal",
        ))

        user = profile.user
        self.send_email(user.email if user else None, "document_status", {
            "username": user.username if user else "",
            "document_name": document.name,
            "status": status,
            "reason": reason,
            "notes": notes,
        })
        return delivered

    def partner_verification_status_updated(
        self,
        profile: PartnerProfile,
        status: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        verified = status == "verified"
        delivered = self.notify(profile.user_id, Notification(
            type="partner_verification_status",
            title="Account Verified!" if verified else "Account Update Required",
            message=(
                "Congratulations! Your partner account has been verified"
                if verified
                else "Your partner application requires updates"
            ),
            data={
                "partner_id": str(profile.id),
                "status": status,
                "reason": reason,
                "notes": notes,
            },
            priority="high",
        ))

        user = profile.user
        username = user.username if user else ""
        self.send_email(
            user.email if user else None,
            "partner_verified" if verified else "partner_rejected",
            {
                "username": username,
                "company_name": profile.company_name,
                "reason": reason,
                "notes": notes,
            },
        )

        if verified:
            self.notify_admins(Notification(
                type="partner_verified",
                title="Partner Verified",
                message=f"{username} ({profile.company_name}) has been verified",
                data={
                    "partner_id": str(profile.id),
                    "partner_name": username,
                    "company_name": profile.company_name,
                    "verified_at": (profile.verified_at or utcnow()).isoformat(),
                },
            ))
        return delivered


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """FastAPI dependency: the process-wide dispatcher created in lifespan."""
    return request.app.state.notifications
