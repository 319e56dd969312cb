"""
Email notification tests: templates, background queueing and SMTP delivery
"""

import smtplib

import pytest
from fastapi import BackgroundTasks

from conftest import auth_headers, checkout_payload
from main import app
from app.services import notification_service
from app.services.notification_service import (
    EmailNotifier, get_notifier, notify_safely, render, send_email,
    ORDER_PLACED, ORDER_APPROVED, REPORT_SUBMITTED,
)

PARAMETERS = {
    "patient_name": "Alice",
    "order_number": "ORD-1",
    "appointment_date": "2030-01-10",
    "appointment_window": "08:00-09:00",
    "report_url": "http://testserver/uploads/reports/r.pdf",
}


class FakeSMTP:
    """Records messages instead of talking to a mail server"""

    outbox = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = user

    def send_message(self, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.outbox.append(message)


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.outbox = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(notification_service, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(notification_service, "SMTP_USER", "")
    monkeypatch.setattr(notification_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


class TestTemplates:

    def test_render_each_kind(self):
        subject, body = render(ORDER_PLACED, PARAMETERS)
        assert subject == "Your lab test order ORD-1 has been received"
        assert "2030-01-10 (08:00-09:00)" in body

        assert render(ORDER_APPROVED, PARAMETERS)[0] == "Your Lab Test Request Has Been Approved"
        assert PARAMETERS["report_url"] in render(REPORT_SUBMITTED, PARAMETERS)[1]


class TestSendEmail:

    def test_delivers_rendered_message(self, smtp):
        assert send_email("alice@example.com", REPORT_SUBMITTED, PARAMETERS) is True

        [message] = smtp.outbox
        assert message["To"] == "alice@example.com"
        assert message["Subject"] == "Your Lab Test Report is Ready"
        assert PARAMETERS["report_url"] in message.get_payload()

    def test_skipped_without_smtp_host(self, smtp, monkeypatch):
        monkeypatch.setattr(notification_service, "SMTP_HOST", "")
        assert send_email("alice@example.com", ORDER_PLACED, PARAMETERS) is False
        assert smtp.outbox == []

    def test_smtp_failure_is_logged_not_raised(self, smtp):
        smtp.fail_with = smtplib.SMTPServerDisconnected("gone")
        assert send_email("alice@example.com", ORDER_PLACED, PARAMETERS) is False


class TestEmailNotifier:

    def test_notify_queues_a_background_task(self, smtp):
        tasks = BackgroundTasks()
        EmailNotifier(tasks).notify("alice@example.com", ORDER_APPROVED, PARAMETERS)

        assert smtp.outbox == []
        [task] = tasks.tasks
        task.func(*task.args, **task.kwargs)
        assert smtp.outbox[0]["Subject"] == "Your Lab Test Request Has Been Approved"

    def test_no_recipient_queues_nothing(self):
        tasks = BackgroundTasks()
        EmailNotifier(tasks).notify(None, ORDER_PLACED, PARAMETERS)
        assert tasks.tasks == []

    def test_unknown_kind_is_dropped_by_notify_safely(self):
        tasks = BackgroundTasks()
        notify_safely(EmailNotifier(tasks), "alice@example.com", "birthday", PARAMETERS)
        assert tasks.tasks == []

    def test_checkout_sends_email_after_response(self, client, catalog, customer, smtp):
        app.dependency_overrides.pop(get_notifier)
        headers = auth_headers(customer)
        client.post("/api/v1/cart/items", json={"test_id": catalog[0].id}, headers=headers)

        response = client.post(
            "/api/v1/orders/checkout",
            json=checkout_payload(email="alice@example.com"),
            headers=headers,
        )

        assert response.status_code == 201
        [message] = smtp.outbox
        assert message["To"] == "alice@example.com"
        assert response.json()["order_number"] in message["Subject"]
