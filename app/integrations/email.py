from __future__ import annotations

import asyncio
import html
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Protocol

import httpx

from app.config import Settings, load_settings
from app.core.exceptions import InvalidRecipientError, TransientInfraError

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailTransport(Protocol):
    async def deliver(self, to_address: str, template_id: str, template_data: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str

    def render(self, data: Dict[str, Any]) -> tuple[str, str]:
        escaped = {key: html.escape(str(value)) for key, value in data.items()}
        return self.subject.format(**data), self.html.format(**escaped)


REFUND_TEMPLATES: Dict[str, EmailTemplate] = {
    "refund_available_subscriber": EmailTemplate(
        subject="A refund is available for subscription {subscription_id}",
        html=(
            "<p>Hello,</p>"
            "<p>Your subscription <strong>{subscription_id}</strong> has had no activity since "
            "{last_activity_at}. You can now claim a refund for the remaining balance.</p>"
            '<p><a href="{subscription_url}">Review the subscription</a></p>'
        ),
    ),
    "refund_available_supplier": EmailTemplate(
        subject="Subscription {subscription_id} is eligible for a refund",
        html=(
            "<p>Hello,</p>"
            "<p>The subscription <strong>{subscription_id}</strong> you supply has been inactive since "
            "{last_activity_at}. The subscriber has been told that a refund is available.</p>"
            '<p><a href="{subscription_url}">Review the subscription</a></p>'
        ),
    ),
}


def render_template(template_id: str, template_data: Dict[str, Any]) -> tuple[str, str]:
    template = REFUND_TEMPLATES.get(template_id)
    if template is None:
        raise ValueError(f"Unknown email template: {template_id}")
    return template.render(template_data)


class EmailService:
    """Email sending via SendGrid or SMTP."""

    def __init__(self, settings: Settings | None = None, http_transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = settings or load_settings()
        self.sendgrid_key = settings.sendgrid_api_key.get_secret_value() if settings.sendgrid_api_key else None
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password.get_secret_value() if settings.smtp_password else None
        self.default_from_email = settings.default_from_email
        self.default_from_name = settings.default_from_name
        self.http_transport = http_transport

    async def deliver(self, to_address: str, template_id: str, template_data: Dict[str, Any]) -> Dict[str, Any]:
        subject, html_content = render_template(template_id, template_data)
        return await self.send_email(to_address, subject, html_content)

    async def send_email(
        self,
        to: str,
        subject: str,
        html_content: str,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        from_email = from_email or self.default_from_email
        from_name = from_name or self.default_from_name
        if self.sendgrid_key:
            return await self._send_via_sendgrid(to, subject, html_content, from_email, from_name)
        return await self._send_via_smtp(to, subject, html_content, from_email, from_name)

    async def _send_via_sendgrid(
        self, to: str, subject: str, html_content: str, from_email: str, from_name: str
    ) -> Dict[str, Any]:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": from_email, "name": from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        try:
            async with httpx.AsyncClient(timeout=20.0, transport=self.http_transport) as client:
                response = await client.post(
                    SENDGRID_URL,
                    headers={
                        "Authorization": f"Bearer {self.sendgrid_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise TransientInfraError(f"SendGrid request failed: {exc}") from exc

        if response.status_code == 400 and self._rejects_recipient(response):
            raise InvalidRecipientError(to, f"SendGrid rejected recipient {to!r}: {response.text}")
        if response.is_error:
            raise TransientInfraError(f"SendGrid returned {response.status_code}: {response.text}")
        return {"status": "sent", "message_id": response.headers.get("X-Message-Id"), "to": to}

    @staticmethod
    def _rejects_recipient(response: httpx.Response) -> bool:
        try:
            body = response.json()
        except ValueError:
            return False
        errors = body.get("errors") if isinstance(body, dict) else None
        for error in errors or []:
            field = str(error.get("field") or "") if isinstance(error, dict) else ""
            # e.g. "personalizations.0.to.0.email"
            if field.startswith("personalizations") and ".to" in field:
                return True
        return False

    async def _send_via_smtp(
        self, to: str, subject: str, html_content: str, from_email: str, from_name: str
    ) -> Dict[str, Any]:
        if not all([self.smtp_host, self.smtp_username, self.smtp_password]):
            raise TransientInfraError("SMTP is not configured and SendGrid key is missing")
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{from_name} <{from_email}>"
        message["To"] = to
        message.attach(MIMEText(html_content, "html"))
        await asyncio.to_thread(self._smtp_send, to, message)
        return {"status": "sent", "to": to}

    def _smtp_send(self, to: str, message: MIMEMultipart) -> None:
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=20) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(message)
        except smtplib.SMTPRecipientsRefused as exc:
            raise InvalidRecipientError(to, f"SMTP server refused {to!r}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise TransientInfraError(f"SMTP delivery failed: {exc}") from exc
