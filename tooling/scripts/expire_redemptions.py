#!/usr/bin/env python3
"""Expire unvalidated reward redemptions whose validity window has passed.

Intended usage: schedule via cron when the in-process sweep is disabled.

Example:
    python tooling/scripts/expire_redemptions.py
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from rewards_api.db.session import async_session
from rewards_api.scheduling import run_expiry_sweep


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire stale reward redemptions")
    return parser.parse_args()


def main() -> int:
    parse_args()
    expired = asyncio.run(run_expiry_sweep(session_factory=async_session))
    logger.success("Redemption expiry run completed", expired=expired)
    return 0


if __name__ == "__main__":
    sys.exit(main())
