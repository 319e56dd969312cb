"""
Best-effort patient notifications
Emails are queued as FastAPI background tasks and sent after the response;
failures are logged and never reach the caller
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional

from fastapi import BackgroundTasks

from app.config import (
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, EMAIL_FROM_ADDRESS,
)

logger = logging.getLogger(__name__)

ORDER_PLACED = "order_placed"
ORDER_APPROVED = "order_approved"
REPORT_SUBMITTED = "report_submitted"

_TEMPLATES = {
    ORDER_PLACED: (
        "Your lab test order {order_number} has been received",
        "Hello {patient_name},\n\n"
        "We received your order {order_number} for sample collection on "
        "{appointment_date} ({appointment_window}). We will let you know once it is approved.\n",
    ),
    ORDER_APPROVED: (
        "Your Lab Test Request Has Been Approved",
        "Hello {patient_name},\n\n"
        "Your order {order_number} has been approved. Our technician will visit on "
        "{appointment_date} between {appointment_window}.\n",
    ),
    REPORT_SUBMITTED: (
        "Your Lab Test Report is Ready",
        "Hello {patient_name},\n\n"
        "The report for order {order_number} is ready: {report_url}\n",
    ),
}


def render(kind: str, parameters: dict) -> tuple:
    """Return (subject, body) for a notification kind"""
    subject, body = _TEMPLATES[kind]
    return subject.format(**parameters), body.format(**parameters)


def send_email(recipient_email: str, kind: str, parameters: dict) -> bool:
    """Render and send one notification over SMTP; returns False when nothing was sent"""
    if not SMTP_HOST:
        logger.info(f"SMTP not configured; {kind} email to {recipient_email} not sent")
        return False

    subject, body = render(kind, parameters)
    message = MIMEText(body)
    message["Subject"] = subject
    message["From"] = EMAIL_FROM_ADDRESS
    message["To"] = recipient_email

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as server:
            server.starttls()
            if SMTP_USER:
                server.login(SMTP_USER, SMTP_PASSWORD)
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        # Runs after the response is sent; nobody is left to report to
        logger.error(f"Failed to send {kind} email to {recipient_email}: {e}")
        return False

    logger.info(f"{kind} email sent to {recipient_email}")
    return True


class EmailNotifier:
    """Queues templated emails on the request's background tasks"""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def notify(self, recipient_email: Optional[str], kind: str, parameters: dict):
        if not recipient_email:
            logger.debug(f"No recipient for {kind} notification; skipping")
            return
        # Fail at enqueue time on an unknown kind rather than after the response
        if kind not in _TEMPLATES:
            raise KeyError(f"Unknown notification kind: {kind}")
        self.background_tasks.add_task(send_email, recipient_email, kind, dict(parameters))


def notify_safely(notifier, recipient_email: Optional[str], kind: str, parameters: dict):
    """Hand a notification to the notifier; any error is logged and dropped"""
    if notifier is None:
        return
    try:
        notifier.notify(recipient_email, kind, parameters)
    except Exception as e:
        logger.warning(f"Notification {kind} to {recipient_email} not dispatched: {e}")


def get_notifier(background_tasks: BackgroundTasks) -> EmailNotifier:
    """Dependency: a notifier bound to the current request's background tasks"""
    return EmailNotifier(background_tasks)
