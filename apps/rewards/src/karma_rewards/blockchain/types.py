"""Value types exchanged with the blockchain client adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class AccountQueryKind(str, Enum):
    """Account information views cached per wallet."""

    ASSETS = "assets"
    CREATED_ASSETS = "created-assets"


@dataclass(frozen=True, slots=True)
class AssetHolding:
    asset_id: int
    amount: int
    is_frozen: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AssetHolding":
        return cls(
            asset_id=int(payload.get("asset-id", 0)),
            amount=int(payload.get("amount", 0)),
            is_frozen=bool(payload.get("is-frozen", False)),
        )

    def as_payload(self) -> dict[str, Any]:
        return {"asset-id": self.asset_id, "amount": self.amount, "is-frozen": self.is_frozen}


@dataclass(frozen=True, slots=True)
class OptInStatus:
    opted_in: bool
    balance: int


@dataclass(frozen=True, slots=True)
class ClaimItem:
    """One wallet's pending settlement, snapshotted at enqueue time."""

    wallet_address: str
    amount: int
    user_id: str

    def describe(self) -> str:
        return f"{self.wallet_address} -- {self.amount} -- {self.user_id}"


@dataclass(frozen=True, slots=True)
class ConfirmationInfo:
    tx_id: str
    confirmed_round: int
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SettlementResult:
    """Outcome of one submitted transfer or atomic group."""

    transaction_id: str | None = None
    confirmed_round: int | None = None
    error: str | None = None
    amount: int = 0

    @property
    def succeeded(self) -> bool:
        return self.transaction_id is not None

    @classmethod
    def failed(cls, error: str, *, amount: int = 0) -> "SettlementResult":
        return cls(error=error, amount=amount)


__all__ = [
    "AccountQueryKind",
    "AssetHolding",
    "ClaimItem",
    "ConfirmationInfo",
    "OptInStatus",
    "SettlementResult",
]
