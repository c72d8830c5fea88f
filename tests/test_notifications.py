from datetime import datetime, timedelta

import pytest
import requests

from fisioflow import notifications
from fisioflow.db import db_session
from fisioflow.errors import NotFoundError
from fisioflow.models import NotificationChannel, NotificationType
from fisioflow.notifications import (
    dispatch_pending,
    mark_notification_sent,
    pending_notifications,
    queue_notification,
    send_whatsapp,
)

T0 = datetime(2030, 1, 10, 8, 0)


class FakeResponse:
    def __init__(self, status_code=201):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def gateway(monkeypatch):
    """Configured Evolution API whose HTTP calls are recorded instead of sent."""
    monkeypatch.setattr(notifications, "EVOLUTION_API_URL", "https://evo.example.com")
    monkeypatch.setattr(notifications, "EVOLUTION_API_KEY", "clinic-1")
    calls = []
    state = {"fail": False}

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        if state["fail"]:
            raise requests.ConnectionError("gateway down")
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    return calls, state


def _queue(recipient, message, minutes=0, channel=NotificationChannel.WHATSAPP):
    with db_session() as s:
        n = queue_notification(s, NotificationType.APPOINTMENT_REMINDER, message, recipient, channel=channel)
        n.created_at = T0 + timedelta(minutes=minutes)
        s.flush()
        return n.id


def test_send_whatsapp_posts_digits_only_number(gateway):
    calls, _ = gateway
    assert send_whatsapp("+55 (11) 99999-0000", "Hello") is True
    assert calls == [
        {
            "url": "https://evo.example.com/message/sendText/clinic-1",
            "json": {"number": "5511999990000", "text": "Hello"},
            "timeout": 10,
        }
    ]


def test_send_whatsapp_reports_http_errors(gateway, monkeypatch):
    monkeypatch.setattr(notifications.requests, "post", lambda url, json=None, timeout=None: FakeResponse(500))
    assert send_whatsapp("5511999990000", "Hello") is False


def test_unconfigured_gateway_sends_nothing(monkeypatch):
    def fail_post(*args, **kwargs):
        raise AssertionError("no HTTP call expected")

    monkeypatch.setattr(notifications.requests, "post", fail_post)
    _queue("5511999990000", "Hi")

    assert send_whatsapp("5511999990000", "Hi") is False
    assert dispatch_pending() == {"total": 0, "sent": 0, "failed": 0}
    assert len(pending_notifications()) == 1


def test_dispatch_marks_sent_and_retries_failures(gateway):
    calls, state = gateway
    _queue("+55 11 90000-0001", "first", minutes=0)
    _queue("+55 11 90000-0002", "second", minutes=1)
    _queue("ops@example.com", "email", minutes=2, channel=NotificationChannel.EMAIL)

    state["fail"] = True
    assert dispatch_pending() == {"total": 2, "sent": 0, "failed": 2}
    assert len(pending_notifications()) == 3

    state["fail"] = False
    assert dispatch_pending() == {"total": 2, "sent": 2, "failed": 0}
    assert [c["json"]["text"] for c in calls[-2:]] == ["first", "second"]
    assert [n["message"] for n in pending_notifications()] == ["email"]

    # nothing left for the gateway
    assert dispatch_pending() == {"total": 0, "sent": 0, "failed": 0}


def test_messages_without_recipient_do_not_block_the_queue(gateway):
    calls, _ = gateway
    for i in range(3):
        _queue(None, f"no phone {i}", minutes=i)
    _queue("", "empty phone", minutes=3)
    _queue("+55 11 90000-0001", "reachable", minutes=4)

    assert dispatch_pending(limit=3) == {"total": 1, "sent": 1, "failed": 0}
    assert [c["json"]["text"] for c in calls] == ["reachable"]

    # still listed for manual handling
    assert len(pending_notifications()) == 4


def test_mark_notification_sent():
    nid = _queue("5511999990000", "Hi")
    assert mark_notification_sent(nid) is True
    assert mark_notification_sent(nid) is False
    assert pending_notifications() == []
    with pytest.raises(NotFoundError):
        mark_notification_sent(9999)
