# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Shared test helpers."""

import re

from sharesphere_server.config import settings


def session_cookie(response) -> str | None:
    """Session id from the response's Set-Cookie header, if one was set."""
    return cookie_value(response, settings.session_cookie_name)


def cookie_header(session_id: str) -> dict[str, str]:
    return {"Cookie": f"{settings.session_cookie_name}={session_id}"}


def cookie_value(response, name: str) -> str | None:
    """Value of a cookie set by the response, if any."""
    for header in response.headers.get_list("set-cookie"):
        match = re.match(rf"{re.escape(name)}=([^;]*)", header)
        value = match.group(1).strip('"') if match else ""
        if value:
            return value
    return None


def popup_token(response) -> str | None:
    match = re.search(r'"token": "([^"]+)"', response.text)
    return match.group(1) if match else None
