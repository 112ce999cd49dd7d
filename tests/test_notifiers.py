"""
Tests for NUDGE Notifiers

The webhook transport is exercised against a mocked requests.Session;
nothing touches the network.
"""

import sys
import logging
from pathlib import Path
from unittest.mock import Mock

import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from nudge.delivery.notifiers import LogNotifier, Notification, WebhookNotifier
from nudge.errors import DeliveryError


def make_session(status_code: int = 200, error: Exception = None) -> Mock:
    session = Mock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
        return session

    response = Mock()
    response.status_code = status_code
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    session.post.return_value = response
    return session


def test_notification_payload():
    notification = Notification("group-1", "Standup", reminder_id="r-1", use_broadcast_mention=True,
                                metadata={"tags": ["work"]})
    assert notification.to_dict() == {
        "destination": "group-1",
        "text": "Standup",
        "reminderId": "r-1",
        "useBroadcastMention": True,
        "metadata": {"tags": ["work"]},
    }

    try:
        Notification("  ", "No destination")
        assert False, "Should have raised ValueError"
    except ValueError:
        pass
    print("✓ Notification payload and validation")


def test_webhook_posts_json():
    print("\n" + "="*70)
    print("TEST: Webhook Notifier")
    print("="*70)

    session = make_session()
    notifier = WebhookNotifier("http://localhost:8080/notify", timeout=3, session=session,
                               headers={"Authorization": "Bearer token"})
    notifier.deliver(Notification("group-1", "Standup in 15 minutes", reminder_id="r-1"))

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "http://localhost:8080/notify"
    assert kwargs["timeout"] == 3
    assert kwargs["json"]["text"] == "Standup in 15 minutes"
    assert kwargs["json"]["reminderId"] == "r-1"
    assert kwargs["headers"]["Authorization"] == "Bearer token"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    print("✓ POSTed JSON with timeout and headers")

    notifier.close()
    session.close.assert_called_once()


def test_webhook_failures_raise_delivery_error():
    notification = Notification("group-1", "Standup")
    failures = [
        make_session(status_code=500),
        make_session(error=requests.exceptions.Timeout("slow")),
        make_session(error=requests.exceptions.ConnectionError("refused")),
    ]
    for session in failures:
        notifier = WebhookNotifier("http://localhost:8080/notify", session=session)
        try:
            notifier.deliver(notification)
            assert False, "Should have raised DeliveryError"
        except DeliveryError:
            pass
    print("✓ HTTP error, timeout and connection error all raise DeliveryError")


def test_webhook_requires_url():
    try:
        WebhookNotifier("")
        assert False, "Should have raised ValueError"
    except ValueError:
        pass


def test_log_notifier(caplog):
    with caplog.at_level(logging.INFO, logger="nudge.delivery.notifiers"):
        LogNotifier().deliver(Notification("group-1", "Hello"))
    assert "group-1: Hello" in caplog.text
    print("✓ LogNotifier logs the delivery")
