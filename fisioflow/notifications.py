from __future__ import annotations

import logging
import re

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import EVOLUTION_API_KEY, EVOLUTION_API_URL
from .db import db_session
from .errors import NotFoundError
from .models import Notification, NotificationChannel, NotificationType, iso, utcnow

logger = logging.getLogger(__name__)


# =========================
# WhatsApp gateway (Evolution API)
# =========================
def whatsapp_available() -> bool:
    return bool(EVOLUTION_API_URL and EVOLUTION_API_KEY)


def send_whatsapp(number: str, text: str, timeout: int = 10) -> bool:
    """Send a text message; False when the gateway is not configured or refuses it."""
    if not whatsapp_available():
        logger.warning("Evolution API not configured, WhatsApp message skipped")
        return False

    clean_number = re.sub(r"\D", "", number)
    try:
        r = requests.post(
            f"{EVOLUTION_API_URL}/message/sendText/{EVOLUTION_API_KEY}",
            json={"number": clean_number, "text": text},
            timeout=timeout,
        )
        r.raise_for_status()
    except requests.RequestException as e:
        logger.error("WhatsApp send to %s failed: %s", clean_number, e)
        return False
    return True


# =========================
# Outbound queue
# =========================
def queue_notification(
    s: Session,
    type: NotificationType,
    message: str,
    recipient: str | None,
    channel: NotificationChannel = NotificationChannel.WHATSAPP,
    patient_id: str | None = None,
    appointment_id: str | None = None,
) -> Notification:
    """Adds a notification to the caller's session; delivery happens in dispatch_pending."""
    n = Notification(
        channel=channel,
        type=type,
        message=message,
        recipient=recipient,
        patient_id=patient_id,
        appointment_id=appointment_id,
    )
    s.add(n)
    return n


def _notification_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "channel": n.channel.value,
        "type": n.type.value,
        "recipient": n.recipient,
        "message": n.message,
        "patient_id": n.patient_id,
        "patient": n.patient.full_name if n.patient else None,
        "appointment_id": n.appointment_id,
        "created_at": iso(n.created_at),
        "sent_at": iso(n.sent_at),
    }


def pending_notifications(limit: int = 50) -> list[dict]:
    """Notifications not yet delivered (sent_at is NULL), oldest first."""
    with db_session() as s:
        q = select(Notification).where(Notification.sent_at.is_(None)).order_by(Notification.created_at.asc()).limit(limit)
        return [_notification_dict(n) for n in s.scalars(q)]


def mark_notification_sent(notification_id: int) -> bool:
    with db_session() as s:
        n = s.get(Notification, notification_id)
        if not n:
            raise NotFoundError("Notification", notification_id)
        if n.sent_at is not None:
            return False
        n.sent_at = utcnow()
        return True


def dispatch_pending(limit: int = 50) -> dict[str, int]:
    """
    Deliver pending WhatsApp notifications through the gateway.
    Messages that fail stay pending and are retried on the next run.
    """
    stats = {"total": 0, "sent": 0, "failed": 0}
    if not whatsapp_available():
        return stats

    with db_session() as s:
        q = (
            select(Notification)
            .where(
                Notification.sent_at.is_(None),
                Notification.channel == NotificationChannel.WHATSAPP,
                # recipient-less messages are left for manual handling
                Notification.recipient.is_not(None),
                Notification.recipient != "",
            )
            .order_by(Notification.created_at.asc())
            .limit(limit)
        )
        for n in s.scalars(q):
            stats["total"] += 1
            if send_whatsapp(n.recipient, n.message):
                n.sent_at = utcnow()
                stats["sent"] += 1
            else:
                stats["failed"] += 1

    logger.info("notification dispatch: %s", stats)
    return stats
