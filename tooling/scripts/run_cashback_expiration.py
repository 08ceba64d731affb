#!/usr/bin/env python3
"""Expire cashback credit whose expiry date has passed.

Intended usage: schedule via cron or a workflow runner when the in-process
worker (``CASHBACK_EXPIRATION_WORKER_ENABLED``) is disabled.

Example:
    python tooling/scripts/run_cashback_expiration.py --batch-size 200
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire due cashback credit")
    parser.add_argument("--batch-size", type=int, default=500, help="Credits processed per committed batch.")
    parser.add_argument("--max-batches", type=int, default=20, help="Stop after this many batches.")
    return parser.parse_args()


async def _run(batch_size: int, max_batches: int) -> Dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashback_api.db.session import async_session  # type: ignore import-position
    from cashback_api.jobs.cashback import run_cashback_expiration  # type: ignore import-position

    return await run_cashback_expiration(
        session_factory=async_session,
        batch_size=batch_size,
        max_batches=max_batches,
    )


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.batch_size, args.max_batches))
    logger.success("Cashback expiration run completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
