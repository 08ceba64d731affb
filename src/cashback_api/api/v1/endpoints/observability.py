"""Observability endpoints for cashback ledger telemetry and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from cashback_api.api.dependencies.security import require_internal_api_key
from cashback_api.observability.cashback import get_cashback_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/cashback",
    dependencies=[Depends(require_internal_api_key)],
    summary="Cashback ledger observability snapshot",
)
async def get_cashback_snapshot() -> dict[str, object]:
    return get_cashback_store().snapshot().as_dict()


def _format_metric(
    name: str,
    description: str,
    value: int | float,
    labels: dict[str, str] | None = None,
    *,
    metric_type: str = "counter",
) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} {metric_type}",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_internal_api_key)],
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_cashback_store().snapshot()
    lines: list[str] = []

    for key, value in sorted(snapshot.counters.items()):
        lines.extend(_format_metric(f"cashback_{key}_total", f"Cashback ledger {key.replace('_', ' ')}", value))
    for key, value in sorted(snapshot.amounts.items()):
        lines.extend(
            _format_metric(
                f"cashback_{key}_amount_total",
                f"Cashback amount {key} in cents",
                float(value),
            )
        )
    for kind, value in sorted(snapshot.rejections.items()):
        lines.extend(
            _format_metric(
                "cashback_redemption_rejections_total",
                "Rejected cashback redemptions by kind",
                value,
                {"kind": kind},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
