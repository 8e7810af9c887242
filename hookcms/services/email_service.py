"""
Email Service

Sends mail through the active email provider's transport. Bodies are
rendered from the Jinja2 templates in ``hookcms/templates/emails``.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.config import settings
from hookcms.exceptions import ConfigurationError
from hookcms.hooks.email_providers import EmailProviders, TransportConfig
from hookcms.services.options_service import OptionsService

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "emails"
DEFAULT_FROM_NAME = "HookCMS"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_template(name: str, **context: Any) -> str:
    return _env.get_template(name).render(**context)


def build_message(transport: TransportConfig, to_email: str | list[str], subject: str, html: str, text: str | None):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((transport.from_name or DEFAULT_FROM_NAME, transport.from_address or transport.user or ""))
    msg["To"] = to_email if isinstance(to_email, str) else ", ".join(to_email)
    if text:
        msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))
    return msg


def _open_smtp(transport: TransportConfig) -> smtplib.SMTP:
    if transport.secure:
        server = smtplib.SMTP_SSL(transport.host, transport.port, timeout=30)
    else:
        server = smtplib.SMTP(transport.host, transport.port, timeout=30)
        server.starttls()
    if transport.user and transport.password:
        server.login(transport.user, transport.password)
    return server


def _deliver(transport: TransportConfig, msg: MIMEMultipart) -> None:
    with _open_smtp(transport) as server:
        server.send_message(msg)


def _noop(transport: TransportConfig) -> None:
    with _open_smtp(transport) as server:
        server.noop()


class EmailService:
    def __init__(self, db: AsyncSession, providers: EmailProviders | None = None):
        self.db = db
        self.providers = providers

    async def get_transport(self) -> TransportConfig:
        if self.providers is None:
            self.providers = EmailProviders(self.db)
            await self.providers.init()
        provider = await self.providers.get_active_provider()
        if provider is None:
            raise ConfigurationError("No email provider is configured", service="email")
        return await provider.configure(self.db)

    async def site_context(self) -> dict[str, str]:
        site_name = await OptionsService.get_option(self.db, "site_name") or settings.app_name
        site_url = await OptionsService.get_option(self.db, "site_url") or settings.app_url
        return {"site_name": str(site_name), "site_url": str(site_url).rstrip("/")}

    async def send_email(
        self,
        to: str | list[str],
        subject: str,
        html: str,
        text: str | None = None,
    ) -> bool:
        """
        Send an email with the active provider's transport.

        Returns:
            bool: True if the message was handed to the server, False otherwise
        """
        try:
            transport = await self.get_transport()
            msg = build_message(transport, to, subject, html, text)
            await asyncio.to_thread(_deliver, transport, msg)
        except ConfigurationError as e:
            logger.warning("Email not sent to %s: %s", to, e.message)
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return False

        logger.info("Email sent to %s: %s", to, subject)
        return True

    async def send_welcome_email(self, to_email: str, username: str | None = None) -> bool:
        site = await self.site_context()
        name = username or to_email
        html = render_template("welcome.html", username=name, login_url=f"{site['site_url']}/admin/login", **site)
        text = (
            f"Welcome to {site['site_name']}, {name}!\n\n"
            f"Your account has been created. You can log in at {site['site_url']}/admin/login\n"
        )
        return await self.send_email(to_email, f"Welcome to {site['site_name']}!", html, text)

    async def send_password_reset_email(
        self, to_email: str, token: str, username: str | None = None, origin: str | None = None
    ) -> bool:
        site = await self.site_context()
        base = (origin or site["site_url"]).rstrip("/")
        reset_url = f"{base}/admin/reset-password?token={token}"
        name = username or to_email
        html = render_template("password_reset.html", username=name, reset_url=reset_url, **site)
        text = (
            f"Hello {name},\n\n"
            f"Reset your {site['site_name']} password here: {reset_url}\n\n"
            "This link expires in 60 minutes. If you didn't request it, ignore this email.\n"
        )
        return await self.send_email(to_email, f"Reset your {site['site_name']} password", html, text)

    async def verify_connection(self) -> bool:
        try:
            transport = await self.get_transport()
            await asyncio.to_thread(_noop, transport)
        except (ConfigurationError, smtplib.SMTPException, OSError) as e:
            logger.warning("Email transport check failed: %s", e)
            return False
        return True
