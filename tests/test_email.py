# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Verification email rendering and delivery fallbacks."""

import smtplib

from sharesphere_server.config import settings
from sharesphere_server.services import email


def test_verification_email_contains_link():
    url = email.verification_url("tok123")
    assert url == f"{settings.frontend_url.rstrip('/')}/email-verified?token=tok123"
    html = email.render_verification_email("Ada <script>", url)
    assert url in html
    assert "<script>" not in html
    text = email.html_to_text(html)
    assert "<" not in text
    assert url in text


async def test_send_without_smtp_logs_and_succeeds(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", None)
    assert await email.send_email("ada@uni.edu", "Hi", "<p>hello</p>") is True


async def test_send_failure_returns_false(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", "smtp.uni.edu")
    monkeypatch.setattr(settings, "smtp_user", "mailer")

    def broken_send(to, subject, html):
        raise smtplib.SMTPException("relay refused")

    monkeypatch.setattr(email, "_smtp_send", broken_send)
    assert await email.send_verification_email("ada@uni.edu", "Ada", "tok123") is False
