#!/usr/bin/env python3
# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later
"""Delete expired verification tokens. Meant for cron; verification also sweeps on success.

Run from repo root with: python3 scripts/sweep_verification_tokens.py
"""
import asyncio
import logging

from sharesphere_server.config import settings
from sharesphere_server.database import async_session_maker, close_db
from sharesphere_server.services.verification import sweep_expired


async def main() -> int:
    async with async_session_maker() as db:
        removed = await sweep_expired(db)
        await db.commit()
    await close_db()
    return removed


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    print(f"Removed {asyncio.run(main())} expired verification tokens")
