"""
SMTP email adapter.

Opens one SMTP session per send in a worker thread; nothing is pooled or
cached between sends.
"""
import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from html import escape
from typing import Literal, Optional

from pydantic import Field, model_validator

from mediaportal.notifications.adapters.base import AdapterConfig, DeliveryError, NotificationAdapter
from mediaportal.notifications.types import NotificationPayload


class EmailConfig(AdapterConfig):
    smtp_host: str = Field(min_length=1)
    smtp_port: int = Field(default=587, gt=0, lt=65536)
    encryption: Literal["none", "default", "starttls", "opportunistic", "tls", "implicit"] = "default"
    auth_user: Optional[str] = None
    auth_pass: Optional[str] = None
    allow_self_signed: bool = False
    sender_name: str = "mediaportal"
    sender_address: Optional[str] = None
    email_from: Optional[str] = None
    to: Optional[str] = Field(default=None, description="Fixed recipient; otherwise the scoped user's address")

    @model_validator(mode="after")
    def check_sender(self) -> "EmailConfig":
        if not (self.sender_address or self.email_from):
            raise ValueError("sender_address is required")
        return self

    @property
    def from_address(self) -> str:
        return self.email_from or self.sender_address or ""


class EmailAdapter(NotificationAdapter):
    """
    Args:
        smtp_factory: Callable building the SMTP client (tests pass a fake)
        smtp_ssl_factory: Same for implicit TLS connections
        timeout: Socket timeout in seconds
    """

    endpoint_type = "email"
    label = "Email"
    config_model = EmailConfig

    def __init__(self, smtp_factory=smtplib.SMTP, smtp_ssl_factory=smtplib.SMTP_SSL, timeout: float = 15.0):
        self._smtp_factory = smtp_factory
        self._smtp_ssl_factory = smtp_ssl_factory
        self._timeout = timeout

    def build_message(self, config: EmailConfig, payload: NotificationPayload, recipient: str) -> MIMEMultipart:
        text_lines = [payload.title, "", payload.message]
        for f in payload.fields:
            text_lines.append(f"{f.get('name', '')}: {f.get('value', '')}")
        if payload.url:
            text_lines.extend(["", payload.url])

        rows = "".join(
            f"<tr><td><strong>{escape(str(f.get('name', '')))}</strong></td>"
            f"<td>{escape(str(f.get('value', '')))}</td></tr>"
            for f in payload.fields
        )
        html = [f"<h2>{escape(payload.title)}</h2>", f"<p>{escape(payload.message)}</p>"]
        if rows:
            html.append(f"<table>{rows}</table>")
        if payload.url:
            html.append(f'<p><a href="{escape(payload.url, quote=True)}">Open</a></p>')
        if payload.footer:
            html.append(f"<p><small>{escape(payload.footer)}</small></p>")

        message = MIMEMultipart("alternative")
        message["Subject"] = payload.title
        message["From"] = formataddr((config.sender_name, config.from_address))
        message["To"] = recipient
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid()
        message.attach(MIMEText("\n".join(text_lines), "plain", "utf-8"))
        message.attach(MIMEText("\n".join(html), "html", "utf-8"))
        return message

    def _ssl_context(self, config: EmailConfig) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if config.allow_self_signed:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _send_sync(self, config: EmailConfig, message: MIMEMultipart) -> None:
        context = self._ssl_context(config)
        if config.encryption in ("tls", "implicit"):
            smtp = self._smtp_ssl_factory(config.smtp_host, config.smtp_port, timeout=self._timeout, context=context)
        else:
            smtp = self._smtp_factory(config.smtp_host, config.smtp_port, timeout=self._timeout)

        with smtp:
            smtp.ehlo()
            if config.encryption in ("starttls", "opportunistic"):
                # STARTTLS is mandatory for these modes
                smtp.starttls(context=context)
                smtp.ehlo()
            elif config.encryption == "default" and smtp.has_extn("starttls"):
                smtp.starttls(context=context)
                smtp.ehlo()
            if config.auth_user and config.auth_pass:
                smtp.login(config.auth_user, config.auth_pass)
            smtp.send_message(message)

    async def _deliver(self, config: EmailConfig, payload: NotificationPayload, target) -> None:
        recipient = payload.recipient_email or config.to
        if not recipient:
            raise DeliveryError("Email recipient is not configured")

        message = self.build_message(config, payload, recipient)
        try:
            await asyncio.to_thread(self._send_sync, config, message)
        except smtplib.SMTPResponseException as e:
            detail = e.smtp_error.decode("utf-8", "replace") if isinstance(e.smtp_error, bytes) else str(e.smtp_error)
            raise DeliveryError(f"SMTP error {e.smtp_code}: {detail}", status_code=e.smtp_code) from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP error: {e}") from e
