"""Observability store for settlement runs."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SettlementSnapshot:
    totals: Dict[str, int]
    assets: Dict[int, Dict[str, int]]
    last_run_at: datetime | None
    last_error: str | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": dict(self.totals),
            "assets": {str(asset_id): dict(counters) for asset_id, counters in self.assets.items()},
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class SettlementObservabilityStore:
    """Collect settlement engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._totals: Dict[str, int] = defaultdict(int)
        self._assets: Dict[int, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._last_run_at: datetime | None = None
        self._last_error: str | None = None

    def _bump(self, asset_id: int, key: str, amount: int = 1) -> None:
        self._totals[key] += amount
        self._assets[asset_id][key] += amount

    def record_run(self, asset_id: int) -> None:
        with self._lock:
            self._bump(asset_id, "runs")
            self._last_run_at = _utcnow()

    def record_skipped_run(self, asset_id: int) -> None:
        with self._lock:
            self._bump(asset_id, "skipped_runs")

    def record_opt_in_skips(self, asset_id: int, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._bump(asset_id, "opt_in_skips", count)

    def record_group(self, asset_id: int, *, succeeded: bool, items: int, amount: int, error: str | None = None) -> None:
        with self._lock:
            self._bump(asset_id, "groups_submitted")
            if succeeded:
                self._bump(asset_id, "groups_succeeded")
                self._bump(asset_id, "items_settled", items)
                self._bump(asset_id, "amount_settled", amount)
            else:
                self._bump(asset_id, "groups_failed")
                self._bump(asset_id, "items_failed", items)
                self._last_error = error

    def record_reconciliation_error(self, asset_id: int, error: str) -> None:
        with self._lock:
            self._bump(asset_id, "reconciliation_errors")
            self._last_error = error

    def snapshot(self) -> SettlementSnapshot:
        with self._lock:
            totals = dict(self._totals)
            assets = {asset_id: dict(counters) for asset_id, counters in self._assets.items()}
            return SettlementSnapshot(
                totals=totals,
                assets=assets,
                last_run_at=self._last_run_at,
                last_error=self._last_error,
            )

    def reset(self) -> None:
        with self._lock:
            self._totals.clear()
            self._assets.clear()
            self._last_run_at = None
            self._last_error = None


_STORE = SettlementObservabilityStore()


def get_settlement_store() -> SettlementObservabilityStore:
    return _STORE


__all__ = ["SettlementObservabilityStore", "SettlementSnapshot", "get_settlement_store"]
