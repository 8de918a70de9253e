"""Error taxonomy for reward transfers and the remote ledger."""

from __future__ import annotations

import re


class RewardsError(RuntimeError):
    """Base class for reward economy failures."""


class TransferValidationError(RewardsError):
    """Raised before any network call when a transfer request is malformed."""


class OptInRequiredError(TransferValidationError):
    """Raised when a user has no wallet opted into the asset."""

    def __init__(self, user_id: str, asset_id: int) -> None:
        super().__init__(f"User {user_id} has no wallet opted into asset {asset_id}")
        self.user_id = user_id
        self.asset_id = asset_id


class InsufficientFundsError(RewardsError):
    """Raised when the sender's live balance cannot cover a transfer."""

    def __init__(self, wallet_address: str, *, balance: int, requested: int) -> None:
        super().__init__("Insufficient Funds to cover transaction")
        self.wallet_address = wallet_address
        self.balance = balance
        self.requested = requested


class RemoteError(RewardsError):
    """Raised when the remote ledger call fails."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class TransientRemoteError(RemoteError):
    """Network failure or overloaded node; safe to retry."""


class RemoteRejectedError(RemoteError):
    """The node refused the request; retrying will not help."""


class RemoteUnavailable(RemoteError):
    """Raised once the retry budget for a remote call is exhausted."""

    def __init__(self, operation: str, *, attempts: int, last_error: Exception | None = None) -> None:
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"{operation} unavailable after {attempts} attempts{detail}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class ConfirmationTimeout(RemoteError):
    """The transaction was not confirmed within the allowed rounds."""

    def __init__(self, tx_id: str, rounds: int) -> None:
        super().__init__(f"Transaction {tx_id} not confirmed after {rounds} rounds")
        self.tx_id = tx_id
        self.rounds = rounds


class LedgerUnderflowError(RewardsError):
    """Raised when a decrement would drive temporary tokens below zero."""

    def __init__(self, wallet_address: str, asset_id: int, *, delta: int, current: int | None) -> None:
        super().__init__(
            f"Refusing to apply {delta} to {wallet_address} (asset {asset_id}); current balance {current}"
        )
        self.wallet_address = wallet_address
        self.asset_id = asset_id
        self.delta = delta
        self.current = current


class RecordNotFoundError(RewardsError):
    """Raised when a ledger record is required but missing."""


class SettlementInProgressError(RewardsError):
    """Raised when a claim is requested while the asset's settlement lease is held."""

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"A settlement run for asset {asset_id} is already in progress")
        self.asset_id = asset_id


_UNDERFLOW = re.compile(
    r"TransactionPool\.Remember: transaction ([\dA-Za-z]+): underflow on subtracting (\d+) from sender amount (\d+)"
)
_MISSING_ASSET = re.compile(
    r"TransactionPool\.Remember: transaction ([\dA-Za-z]+): asset (\d+) missing from ([\dA-Za-z]+)"
)


def describe_transfer_error(error: BaseException) -> str:
    """Translate node rejection messages into operator-facing text."""

    message = str(error)
    match = _UNDERFLOW.search(message)
    if match:
        tx_id, subtracted, available = match.groups()
        return (
            f"Insufficient funds: Tried to subtract {subtracted} from sender amount {available} "
            f"in transaction {tx_id}"
        )
    match = _MISSING_ASSET.search(message)
    if match:
        tx_id, asset_id, missing_from = match.groups()
        return f"Missing asset: Asset {asset_id} missing from {missing_from} in transaction {tx_id}"
    return message


__all__ = [
    "ConfirmationTimeout",
    "InsufficientFundsError",
    "LedgerUnderflowError",
    "OptInRequiredError",
    "RecordNotFoundError",
    "RemoteError",
    "RemoteRejectedError",
    "RemoteUnavailable",
    "RewardsError",
    "SettlementInProgressError",
    "TransferValidationError",
    "TransientRemoteError",
    "describe_transfer_error",
]
