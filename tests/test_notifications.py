"""Tests for in-app notifications and e-mail fan-out."""

import pytest

from conftest import RecordingEmailSender
from marketplace.errors import NotFoundError
from marketplace.services import NotificationService


@pytest.fixture
def notifications(components):
    return components["notifications"]


class BrokenSender:
    def send(self, to, subject, body):
        raise ConnectionError("smtp down")


class TestNotify:
    def test_stores_and_emails(self, notifications, users, email_sender):
        nid = notifications.notify(users["customer"], "Hello", type="general", send_email=True, subject="Hi")
        assert nid is not None
        assert email_sender.sent == [{"to": "customer@example.com", "subject": "Hi", "body": "Hello"}]
        rows = notifications.list_for_user(users["customer"])
        assert rows[0]["message"] == "Hello"
        assert rows[0]["is_read"] is False

    def test_email_only_for_guests(self, notifications, email_sender):
        assert notifications.notify(None, "Thanks", send_email=True, email="guest@example.com") is None
        assert email_sender.sent[0]["to"] == "guest@example.com"

    def test_no_email_unless_asked(self, notifications, users, email_sender):
        notifications.notify(users["customer"], "Quiet")
        assert email_sender.sent == []

    def test_transport_failure_is_swallowed(self, session_factory, users):
        service = NotificationService(session_factory, email_sender=BrokenSender())
        assert service.notify(users["customer"], "Still stored", send_email=True) is not None
        assert len(service.list_for_user(users["customer"])) == 1

    def test_unknown_user(self, session_factory):
        sender = RecordingEmailSender()
        service = NotificationService(session_factory, email_sender=sender)
        assert service.notify("ghost", "Nobody home", send_email=True) is None
        assert sender.sent == []


class TestReadState:
    def test_mark_one(self, notifications, users):
        nid = notifications.notify(users["customer"], "One")
        assert notifications.mark_as_read(nid, users["customer"])["is_read"] is True
        assert notifications.list_for_user(users["customer"], unread_only=True) == []

    def test_cannot_read_someone_elses(self, notifications, users):
        nid = notifications.notify(users["customer"], "Private")
        with pytest.raises(NotFoundError):
            notifications.mark_as_read(nid, users["other"])

    def test_mark_all(self, notifications, users):
        for text in ("a", "b", "c"):
            notifications.notify(users["customer"], text)
        notifications.notify(users["other"], "not mine")
        assert notifications.mark_all_as_read(users["customer"]) == 3
        assert notifications.list_for_user(users["other"], unread_only=True)[0]["message"] == "not mine"
