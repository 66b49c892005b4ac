# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email sending service. Logs to console when SMTP not configured."""

import asyncio
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from sharesphere_server.config import settings

logger = logging.getLogger(__name__)

templates_dir = Path(__file__).resolve().parent.parent / "templates"
email_templates = Environment(
    loader=FileSystemLoader(str(templates_dir)),
    autoescape=select_autoescape(["html"]),
)

VERIFICATION_SUBJECT = "Verify your email address - ShareSphere"


def verification_url(token: str) -> str:
    """Frontend page that posts the token back to /verify-email."""
    return f"{settings.frontend_url.rstrip('/')}/email-verified?token={token}"


def render_verification_email(display_name: str, url: str) -> str:
    """Render the verification email HTML."""
    template = email_templates.get_template("emails/verify_email.html")
    return template.render(
        user_name=display_name,
        verification_url=url,
        logo_url=settings.logo_url,
        ttl_hours=settings.verification_token_ttl_hours,
    )


def html_to_text(html: str) -> str:
    """Crude plain-text alternative for clients that do not render HTML."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html, flags=re.S | re.I)
    text = re.sub(r"<br\s*/?>|</p>|</h1>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def _smtp_send(to: str, subject: str, html: str) -> None:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from
    msg["To"] = to
    msg.attach(MIMEText(html_to_text(html), "plain"))
    msg.attach(MIMEText(html, "html"))
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.email_timeout_seconds) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password or "")
        server.sendmail(settings.smtp_from, [to], msg.as_string())


async def send_email(to: str, subject: str, html: str) -> bool:
    """Send an HTML email. Returns False on failure; logs to console if SMTP not configured."""
    if not (settings.smtp_host and settings.smtp_user):
        logger.info("Email (SMTP not configured): To=%s Subject=%s", to, subject)
        return True
    try:
        await asyncio.wait_for(
            asyncio.to_thread(_smtp_send, to, subject, html),
            timeout=settings.email_timeout_seconds,
        )
    except (smtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
        logger.exception("Failed to send email to %s: %s", to, e)
        return False
    return True


async def send_verification_email(to: str, display_name: str, token: str) -> bool:
    """Render and send the verification email carrying the raw token link."""
    html = render_verification_email(display_name, verification_url(token))
    return await send_email(to, VERIFICATION_SUBJECT, html)
