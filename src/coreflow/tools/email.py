"""Email delivery: console (default), SMTP/Gmail and SendGrid backends."""

from __future__ import annotations

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Callable

import sendgrid
from pydantic import BaseModel, Field
from rich.console import Console
from rich.panel import Panel
from sendgrid.helpers.mail import Content, From, Mail, To

from coreflow.config import Config

log = logging.getLogger(__name__)
console = Console()


class OutgoingEmail(BaseModel):
    to: str
    subject: str
    body: str
    from_name: str = ""
    email_type: str = "Custom"
    metadata: dict[str, str] = Field(default_factory=dict)


class SendResult(BaseModel):
    ok: bool
    message_id: str = ""
    error: str = ""


# What the engine and the offer service call to deliver a message
EmailSender = Callable[[OutgoingEmail], SendResult]


def send_email(config: Config, email: OutgoingEmail) -> SendResult:
    """Send an email using the configured backend."""
    backend = config.email_backend.lower()

    if backend == "sendgrid":
        return _send_sendgrid(config, email)
    elif backend in ("smtp", "gmail"):
        return _send_smtp(config, email, gmail=backend == "gmail")
    elif backend == "console":
        return _send_console(config, email)
    return SendResult(ok=False, error=f"Unknown email backend: {backend}")


def make_sender(config: Config) -> EmailSender:
    def _sender(email: OutgoingEmail) -> SendResult:
        return send_email(config, email)
    return _sender


def _send_console(config: Config, email: OutgoingEmail) -> SendResult:
    """Print the email instead of sending it (development mode)."""
    message_id = f"<{uuid.uuid4().hex}@coreflow.local>"
    console.print(Panel(
        f"[bold]From:[/bold] {email.from_name or config.email_from_name} <{config.email_from}>\n"
        f"[bold]To:[/bold] {email.to}\n"
        f"[bold]Subject:[/bold] {email.subject}\n"
        f"[bold]Type:[/bold] {email.email_type}\n\n"
        f"{email.body}",
        title="Email (Console Mode)",
        border_style="cyan",
    ))
    return SendResult(ok=True, message_id=message_id)


def _send_smtp(config: Config, email: OutgoingEmail, gmail: bool = False) -> SendResult:
    host = config.smtp_host
    port = config.smtp_port
    username = config.smtp_username
    if gmail:
        host = host or "smtp.gmail.com"
        port = port or 587
        username = username or config.email_from

    if not host:
        return SendResult(ok=False, error="SMTP host not configured")
    if not config.smtp_password:
        return SendResult(ok=False, error="SMTP password not configured")

    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((email.from_name or config.email_from_name, config.email_from))
    msg["To"] = email.to
    msg["Subject"] = email.subject
    msg["Message-ID"] = make_msgid(domain=config.email_from.split("@")[-1] or None)
    msg.attach(MIMEText(email.body, "plain", "utf-8"))

    try:
        with smtplib.SMTP(host, port, timeout=15) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(username or config.email_from, config.smtp_password)
            server.sendmail(config.email_from, [email.to], msg.as_string())
    except smtplib.SMTPAuthenticationError:
        log.warning("SMTP authentication failed for %s", username)
        return SendResult(ok=False, error="SMTP authentication failed")
    except (smtplib.SMTPException, OSError) as e:
        log.warning("SMTP error sending to %s: %s", email.to, e)
        return SendResult(ok=False, error=f"SMTP error: {e}")

    return SendResult(ok=True, message_id=msg["Message-ID"])


def _send_sendgrid(config: Config, email: OutgoingEmail) -> SendResult:
    """Send via SendGrid API."""
    try:
        sg = sendgrid.SendGridAPIClient(api_key=config.sendgrid_api_key)
        message = Mail(
            from_email=From(config.email_from, email.from_name or config.email_from_name),
            to_emails=To(email.to),
            subject=email.subject,
            plain_text_content=Content("text/plain", email.body),
        )
        response = sg.client.mail.send.post(request_body=message.get())
    except Exception as e:
        log.warning("SendGrid error sending to %s: %s", email.to, e)
        return SendResult(ok=False, error=f"SendGrid error: {e}")

    if response.status_code in (200, 201, 202):
        return SendResult(ok=True, message_id=response.headers.get("X-Message-Id", "") if response.headers else "")
    log.warning("SendGrid returned %s for %s", response.status_code, email.to)
    return SendResult(ok=False, error=f"SendGrid error: {response.status_code}")
