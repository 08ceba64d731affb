from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class CashbackSnapshot:
    counters: Dict[str, int]
    amounts: Dict[str, Decimal]
    rejections: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "counters": dict(self.counters),
            "amounts": {key: float(value) for key, value in self.amounts.items()},
            "rejections": dict(self.rejections),
        }


class CashbackObservabilityStore:
    """Collect cashback ledger telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._amounts: Dict[str, Decimal] = defaultdict(Decimal)
        self._rejections: Dict[str, int] = defaultdict(int)

    def record_accumulation(self, amount: Decimal, *, campaign: bool = False) -> None:
        with self._lock:
            self._counters["accumulations"] += 1
            self._amounts["accumulated"] += amount
            if campaign:
                self._counters["campaign_accumulations"] += 1

    def record_skipped_accumulation(self) -> None:
        with self._lock:
            self._counters["accumulations_skipped"] += 1

    def record_redemption(self, amount: Decimal) -> None:
        with self._lock:
            self._counters["redemptions"] += 1
            self._amounts["redeemed"] += amount

    def record_redemption_rejection(self, kind: str) -> None:
        with self._lock:
            self._rejections[kind] += 1

    def record_reversal(self, *, transactions: int, amount: Decimal, interactions: int) -> None:
        with self._lock:
            self._counters["reversals"] += 1
            self._counters["reversed_transactions"] += transactions
            self._counters["canceled_interactions"] += interactions
            self._amounts["reversed"] += amount

    def record_reversal_discrepancy(self) -> None:
        with self._lock:
            self._counters["reversal_discrepancies"] += 1

    def record_expiration(self, *, transactions: int, amount: Decimal) -> None:
        with self._lock:
            self._counters["expiration_sweeps"] += 1
            self._counters["expired_transactions"] += transactions
            self._amounts["expired"] += amount

    def snapshot(self) -> CashbackSnapshot:
        with self._lock:
            return CashbackSnapshot(
                counters=dict(self._counters),
                amounts=dict(self._amounts),
                rejections=dict(self._rejections),
            )

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._amounts.clear()
            self._rejections.clear()


_STORE = CashbackObservabilityStore()


def get_cashback_store() -> CashbackObservabilityStore:
    return _STORE


__all__ = ["get_cashback_store", "CashbackObservabilityStore", "CashbackSnapshot"]
