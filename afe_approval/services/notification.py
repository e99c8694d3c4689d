from __future__ import annotations

import base64
import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger("afe_approval.notification")

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
BACKENDS = ("smtp", "sendgrid")


class NotificationKind(str, Enum):
    SIGNER_ACTIVATED = "SIGNER_ACTIVATED"
    AFE_FULLY_SIGNED = "AFE_FULLY_SIGNED"
    AFE_REJECTED = "AFE_REJECTED"
    REMINDER = "REMINDER"


_TEMPLATES: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.SIGNER_ACTIVATED: (
        "email/signer_activated.html",
        'Action Required: AFE "{afe_name}" Awaiting Your Signature',
    ),
    NotificationKind.AFE_FULLY_SIGNED: (
        "email/afe_fully_signed.html",
        'AFE "{afe_name}" Has Been Fully Signed',
    ),
    NotificationKind.AFE_REJECTED: (
        "email/afe_rejected.html",
        'AFE "{afe_name}" Has Been Rejected',
    ),
    NotificationKind.REMINDER: (
        "email/reminder.html",
        'Reminder: AFE "{afe_name}" Awaiting Your Signature',
    ),
}


@dataclass
class EmailConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    sender: str
    starttls: bool


@dataclass
class SendGridConfig:
    api_key: str
    sender: str | None


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html_body: str
    text_body: str = ""
    attachments: list[EmailAttachment] = field(default_factory=list)


def build_mime_message(email: OutgoingEmail, sender: str) -> EmailMessage:
    """Plain text and HTML alternatives, with any attachments appended."""
    message = EmailMessage()
    message["Subject"] = email.subject
    message["From"] = sender
    message["To"] = email.to
    message.set_content(email.text_body, subtype="plain", charset="utf-8")
    message.add_alternative(email.html_body, subtype="html", charset="utf-8")
    for item in email.attachments:
        maintype, _, subtype = (item.mime_type or "application/octet-stream").partition("/")
        message.add_attachment(
            item.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=item.filename,
        )
    return message


def deliver_smtp(config: EmailConfig, email: OutgoingEmail) -> None:
    message = build_mime_message(email, config.sender)
    with smtplib.SMTP(config.host, config.port, timeout=30) as smtp:
        if config.starttls:
            smtp.starttls()
        if config.username and config.password:
            smtp.login(config.username, config.password)
        smtp.send_message(message)


def sendgrid_payload(email: OutgoingEmail, sender: str) -> dict[str, Any]:
    name, address = parseaddr(sender)
    if not address:
        raise RuntimeError(f"Invalid sender address {sender!r}")

    sender_block: dict[str, str] = {"email": address}
    if name:
        sender_block["name"] = name
    content = [{"type": "text/html", "value": email.html_body}]
    if email.text_body:
        content.insert(0, {"type": "text/plain", "value": email.text_body})

    payload: dict[str, Any] = {
        "personalizations": [{"to": [{"email": email.to}]}],
        "from": sender_block,
        "subject": email.subject,
        "content": content,
    }
    if email.attachments:
        payload["attachments"] = [
            {
                "content": base64.b64encode(item.content).decode("ascii"),
                "type": item.mime_type or "application/octet-stream",
                "filename": item.filename,
                "disposition": "attachment",
            }
            for item in email.attachments
        ]
    return payload


def deliver_sendgrid(config: SendGridConfig, email: OutgoingEmail, fallback_sender: str | None = None) -> None:
    sender = config.sender or fallback_sender
    if not sender:
        raise RuntimeError("SendGrid sender address missing")
    response = httpx.post(
        SENDGRID_URL,
        headers={"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"},
        json=sendgrid_payload(email, sender),
        timeout=30,
    )
    response.raise_for_status()


class NotificationService:
    """Renders AFE notifications and hands them to SMTP or SendGrid.

    Sending is best effort: :meth:`send` returns ``False`` instead of raising, and when no
    sender is configured the message is only logged.
    """

    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        sendgrid_config: Optional[SendGridConfig] = None,
        email_backend: str = "smtp",
        public_app_url: str | None = None,
        template_root: Path | None = None,
        max_workers: int = 8,
    ) -> None:
        self.email_config = email_config
        self.sendgrid_config = sendgrid_config
        backend = (email_backend or "smtp").strip().lower()
        if sendgrid_config and not email_config:
            backend = "sendgrid"
        self.email_backend = backend if backend in BACKENDS else "smtp"
        self.public_app_url = (public_app_url or "").rstrip("/")
        self.max_workers = max_workers
        root = template_root or Path(__file__).resolve().parent.parent / "templates"
        self.template_env = Environment(loader=FileSystemLoader(root), autoescape=select_autoescape(["html"]))

    @classmethod
    def from_settings(cls, settings) -> "NotificationService":
        service = cls(public_app_url=settings.resolved_public_app_url())
        service.apply_email_settings(settings)
        return service

    def apply_email_settings(self, settings) -> None:
        """Configure the preferred backend, falling back to the other one when it lacks credentials."""
        if not settings.email_from:
            return
        sender = formataddr((settings.email_from_name, settings.email_from))
        preferred = (settings.email_backend or "smtp").strip().lower()
        order = ["sendgrid", "smtp"] if preferred == "sendgrid" else ["smtp", "sendgrid"]
        for backend in order:
            if backend == "sendgrid" and settings.sendgrid_api_key:
                self.configure_sendgrid(api_key=settings.sendgrid_api_key, sender=sender)
                return
            if backend == "smtp" and settings.smtp_host and settings.smtp_port:
                self.configure_email(
                    host=settings.smtp_host,
                    port=int(settings.smtp_port),
                    sender=sender,
                    username=settings.smtp_username,
                    password=settings.smtp_password,
                    starttls=bool(settings.smtp_starttls),
                )
                return

    def configure_email(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
    ) -> None:
        self.email_config = EmailConfig(host, port, username, password, sender, starttls)
        self.email_backend = "smtp"

    def configure_sendgrid(self, *, api_key: str, sender: str | None = None) -> None:
        self.sendgrid_config = SendGridConfig(api_key=api_key, sender=sender)
        self.email_backend = "sendgrid"

    @property
    def configured(self) -> bool:
        config = self.sendgrid_config if self.email_backend == "sendgrid" else self.email_config
        return config is not None

    def afe_link(self, afe_id: Any) -> str:
        return f"{self.public_app_url}/afe/{afe_id}"

    def render(self, kind: NotificationKind, data: dict) -> tuple[str, str]:
        """Return ``(subject, html_body)`` for a notification."""
        template_name, subject_template = _TEMPLATES[NotificationKind(kind)]
        context = {"afe_url": self.afe_link(data.get("afe_id", "")), **data}
        subject = subject_template.format(afe_name=data.get("afe_name", ""))
        return subject, self.template_env.get_template(template_name).render(**context)

    def send(
        self,
        kind: NotificationKind,
        to: str,
        data: dict,
        attachment: EmailAttachment | None = None,
    ) -> bool:
        kind = NotificationKind(kind)
        if not to:
            return False
        try:
            subject, html_body = self.render(kind, data)
        except Exception:
            logger.exception("Could not render %s notification for %s", kind.value, to)
            return False

        if not self.configured:
            logger.info("[Email] Would send %s to %s: %s", kind.value, to, subject)
            return False

        email = OutgoingEmail(
            to=to,
            subject=subject,
            html_body=html_body,
            text_body=f"{subject}\n\n{self.afe_link(data.get('afe_id', ''))}",
            attachments=[attachment] if attachment else [],
        )
        try:
            self._send_email(email)
        except Exception:
            logger.exception("Failed to send %s notification to %s", kind.value, to)
            return False
        logger.info("Sent %s notification to %s", kind.value, to)
        return True

    def send_bulk(
        self,
        kind: NotificationKind,
        recipients: Iterable[str],
        data: dict,
        attachment: EmailAttachment | None = None,
    ) -> dict[str, bool]:
        """Send the same notification to every distinct recipient concurrently."""
        addresses = unique_recipients(recipients)
        if not addresses:
            return {}
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(addresses)))) as pool:
            results = pool.map(lambda address: self.send(kind, address, data, attachment), addresses)
            return dict(zip(addresses, results))

    def _send_email(self, email: OutgoingEmail) -> None:
        if self.email_backend == "sendgrid":
            if not self.sendgrid_config:
                raise RuntimeError("SendGrid sender not configured")
            fallback = self.email_config.sender if self.email_config else None
            deliver_sendgrid(self.sendgrid_config, email, fallback_sender=fallback)
            return
        if not self.email_config:
            raise RuntimeError("Email sender not configured")
        deliver_smtp(self.email_config, email)


def unique_recipients(recipients: Iterable[str]) -> list[str]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen order."""
    result: list[str] = []
    seen: set[str] = set()
    for raw in recipients:
        address = (raw or "").strip()
        if address and address.lower() not in seen:
            seen.add(address.lower())
            result.append(address)
    return result
