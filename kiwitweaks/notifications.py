# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Transactional email.

`Mailer.send` raises EmailDeliveryError when the transport fails. Flows that
have already committed their state (purchases, signups) go through `notify`,
which logs the failure instead of propagating it.
"""
import os
import re
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Callable, Optional

import resend
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from .errors import ConfigurationError, EmailDeliveryError
from .logs import logger, log_auth, log_payment

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates", "email")

REQUIRED_TEMPLATES = (
    "license_key.html",
    "purchase_confirmation.html",
    "email_verification.html",
    "password_reset.html",
    "welcome.html",
)

_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class DeliveryResult:
    message_id: str
    transport: str


def html_to_text(html: str) -> str:
    text = _TAG_RE.sub("", html)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def display_name(email: str, username: Optional[str] = None) -> str:
    return username or email.split("@")[0]


# ========== TRANSPORTS ==========

class ResendTransport:
    name = "resend"

    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender

    def send(self, to: str, subject: str, html: str, text: str) -> str:
        resend.api_key = self.api_key
        result = resend.Emails.send({
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        })
        return result.get("id", "") if isinstance(result, dict) else getattr(result, "id", "")


class SMTPTransport:
    name = "smtp"

    def __init__(self, host: str, port: int = 587, user: Optional[str] = None, password: Optional[str] = None,
                 secure: bool = False, sender: str = "", timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure
        self.sender = sender
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.secure:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def send(self, to: str, subject: str, html: str, text: str) -> str:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self.host)
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        with self._connect() as server:
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        return msg["Message-ID"]


def build_transport(settings):
    if settings.resend_api_key:
        return ResendTransport(settings.resend_api_key, settings.email_from)
    if settings.smtp_host:
        return SMTPTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            secure=settings.smtp_secure,
            sender=settings.email_from,
            timeout=settings.http_timeout,
        )
    logger.warning("No email transport configured (set RESEND_API_KEY or SMTP_HOST) - emails will not be sent")
    return None


# ========== MAILER ==========

class Mailer:
    def __init__(self, transport=None, app_url: str = "https://kiwitweaks.com",
                 download_url: str = "https://kiwitweaks.com/download",
                 support_url: str = "https://kiwitweaks.com/support",
                 template_dir: str = TEMPLATE_DIR):
        self.transport = transport
        self.app_url = app_url.rstrip("/")
        self.download_url = download_url
        self.support_url = support_url
        self.env = Environment(loader=FileSystemLoader(template_dir), autoescape=select_autoescape(["html"]))

        # Fail at startup, not on the first purchase
        for name in REQUIRED_TEMPLATES:
            try:
                self.env.get_template(name)
            except TemplateNotFound:
                raise ConfigurationError(f"Email template not found: {name}")

    @classmethod
    def from_settings(cls, settings) -> "Mailer":
        return cls(
            transport=build_transport(settings),
            app_url=settings.app_url,
            download_url=settings.download_url,
            support_url=settings.support_url,
        )

    def render(self, template: str, context: dict) -> str:
        ctx = {"year": datetime.now(timezone.utc).year, "app_url": self.app_url, **context}
        return self.env.get_template(template).render(**ctx)

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> DeliveryResult:
        if self.transport is None:
            logger.warning("Email not sent - transport not configured (to=%s subject=%r)", to, subject)
            return DeliveryResult(message_id="not-configured", transport="none")

        try:
            message_id = self.transport.send(to, subject, html, text or html_to_text(html))
        except Exception as e:
            logger.error("Failed to send email to %s (%r): %s", to, subject, e)
            raise EmailDeliveryError() from e

        logger.info("Email sent to %s (%r) via %s id=%s", to, subject, self.transport.name, message_id)
        return DeliveryResult(message_id=message_id or "", transport=self.transport.name)

    # ========== FLOWS ==========

    def send_license_key(self, to: str, username: Optional[str], license_key: str, product_name: str,
                         user_id=None) -> DeliveryResult:
        html = self.render("license_key.html", {
            "username": display_name(to, username),
            "email": to,
            "license_key": license_key,
            "product": product_name,
            "download_url": self.download_url,
            "support_url": self.support_url,
        })
        result = self.send(to, "Your KiwiTweaks License Key", html)
        log_payment("license_email_sent", user_id=user_id, product=product_name)
        return result

    def send_purchase_confirmation(self, to: str, username: Optional[str], product_name: str, amount_cents: int,
                                   currency: str, transaction_id: str, purchased_at: datetime) -> DeliveryResult:
        html = self.render("purchase_confirmation.html", {
            "username": display_name(to, username),
            "product": product_name,
            "amount": f"{amount_cents / 100:.2f}",
            "currency": currency,
            "transaction_id": transaction_id,
            "date": purchased_at.strftime("%Y-%m-%d"),
        })
        return self.send(to, "Purchase Confirmation - KiwiTweaks", html)

    def send_email_verification(self, to: str, username: Optional[str], token: str, user_id=None) -> DeliveryResult:
        html = self.render("email_verification.html", {
            "username": display_name(to, username),
            "verification_url": f"{self.app_url}/verify-email?token={token}",
        })
        result = self.send(to, "Verify Your Email Address", html)
        log_auth("verification_email_sent", user_id=user_id, email=to)
        return result

    def send_password_reset(self, to: str, username: Optional[str], token: str, user_id=None) -> DeliveryResult:
        html = self.render("password_reset.html", {
            "username": display_name(to, username),
            "reset_url": f"{self.app_url}/reset-password?token={token}",
            "expiry_hours": 1,
        })
        result = self.send(to, "Reset Your Password", html)
        log_auth("password_reset_email_sent", user_id=user_id, email=to)
        return result

    def send_welcome(self, to: str, username: Optional[str], user_id=None) -> DeliveryResult:
        html = self.render("welcome.html", {
            "username": display_name(to, username),
            "email": to,
            "login_url": f"{self.app_url}/auth.html",
        })
        result = self.send(to, "Welcome to KiwiTweaks!", html)
        log_auth("welcome_email_sent", user_id=user_id, email=to)
        return result


def notify(send: Callable[..., DeliveryResult], *args, **kwargs) -> Optional[DeliveryResult]:
    """Best-effort delivery for flows whose state is already committed."""
    try:
        return send(*args, **kwargs)
    except EmailDeliveryError as e:
        logger.error("Notification %s failed (ref=%s): %s", getattr(send, "__name__", send), e.ref, e.__cause__)
        return None
