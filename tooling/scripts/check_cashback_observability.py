#!/usr/bin/env python3
"""Quick health check for the cashback ledger observability endpoint.

Usage:
    python tooling/scripts/check_cashback_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$INTERNAL_API_KEY"

The script fails when reversal discrepancies (balances clamped at zero) or
internal redemption errors exceed their thresholds.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cashback ledger observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the cashback API service.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Internal API key sent as X-API-Key.",
    )
    parser.add_argument(
        "--max-reversal-discrepancies",
        type=int,
        default=0,
        help="Maximum allowed reversals clamped at zero balance (default: 0).",
    )
    parser.add_argument(
        "--max-internal-errors",
        type=int,
        default=0,
        help="Maximum allowed redemptions rejected with an internal error (default: 0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


def _fail(message: str) -> None:
    print(f"[check-cashback] ❌ {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-cashback] ✅ {message}")


async def fetch_snapshot(client: httpx.AsyncClient, api_key: str | None) -> Dict[str, Any]:
    headers = {"X-API-Key": api_key} if api_key else None
    response = await client.get("/api/v1/observability/cashback", headers=headers)
    response.raise_for_status()
    return response.json()


def validate_snapshot(payload: Dict[str, Any], *, max_discrepancies: int, max_internal_errors: int) -> None:
    counters = payload.get("counters", {}) or {}
    rejections = payload.get("rejections", {}) or {}

    discrepancies = int(counters.get("reversal_discrepancies", 0))
    internal_errors = int(rejections.get("internal_error", 0))

    if discrepancies > max_discrepancies:
        _fail(f"Reversal discrepancies {discrepancies} exceed threshold {max_discrepancies}")
    if internal_errors > max_internal_errors:
        _fail(f"Internal redemption errors {internal_errors} exceed threshold {max_internal_errors}")

    rejected = sum(int(value) for value in rejections.values())
    _log_ok(
        f"Cashback observability OK (accumulations={counters.get('accumulations', 0)}, "
        f"redemptions={counters.get('redemptions', 0)}, rejected={rejected}, "
        f"expired={counters.get('expired_transactions', 0)})"
    )


async def main() -> None:
    args = parse_args()

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        payload = await fetch_snapshot(client, args.api_key)

    validate_snapshot(
        payload,
        max_discrepancies=args.max_reversal_discrepancies,
        max_internal_errors=args.max_internal_errors,
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
    except httpx.HTTPError as exc:
        _fail(f"Request failed: {exc}")
