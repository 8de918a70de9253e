"""Adapter that builds, signs and submits asset transfers for the reward economy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from algosdk import account, encoding, mnemonic, transaction
from algosdk.atomic_transaction_composer import AccountTransactionSigner
from loguru import logger

from karma_rewards.blockchain.remote import RemoteLedger
from karma_rewards.blockchain.retry import RateLimiter, RetryPolicy, with_retry
from karma_rewards.blockchain.types import (
    AccountQueryKind,
    AssetHolding,
    ClaimItem,
    ConfirmationInfo,
    OptInStatus,
    SettlementResult,
)
from karma_rewards.errors import (
    InsufficientFundsError,
    RewardsError,
    TransferValidationError,
    describe_transfer_error,
)
from karma_rewards.services.cache import Cache

T = TypeVar("T")

MAX_GROUP_SIZE = 16


@dataclass(frozen=True, slots=True)
class SigningAccount:
    address: str
    private_key: str

    @classmethod
    def from_mnemonic(cls, phrase: str) -> "SigningAccount":
        private_key = mnemonic.to_private_key(phrase.strip())
        return cls(address=account.address_from_private_key(private_key), private_key=private_key)


@dataclass(frozen=True, slots=True)
class SigningAccounts:
    """Claim authority for payouts and clawback authority for revocation transfers."""

    claim: SigningAccount
    clawback: SigningAccount

    @classmethod
    def from_mnemonics(cls, *, clawback_mnemonic: str, claim_mnemonic: str | None = None) -> "SigningAccounts":
        if not clawback_mnemonic:
            raise TransferValidationError("A clawback mnemonic is required to sign transfers")
        clawback = SigningAccount.from_mnemonic(clawback_mnemonic)
        claim = SigningAccount.from_mnemonic(claim_mnemonic) if claim_mnemonic else clawback
        return cls(claim=claim, clawback=clawback)


def holdings_cache_key(wallet_address: str, kind: AccountQueryKind) -> str:
    return f"wallet-account-assets:{wallet_address}:{kind.value}"


class AlgorandClient:
    """Retry-wrapped, rate-limited access to the remote ledger.

    Reads of account holdings are served from the cache when possible.
    Transfer helpers validate their input up front and raise
    :class:`TransferValidationError` before touching the network; every other
    failure is reported through a failed :class:`SettlementResult`.
    """

    def __init__(
        self,
        remote: RemoteLedger,
        *,
        accounts: SigningAccounts,
        cache: Cache,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        holdings_ttl_seconds: int = 3600,
        confirmation_rounds: int = 5,
        max_group_size: int = MAX_GROUP_SIZE,
    ) -> None:
        self._remote = remote
        self._accounts = accounts
        self._cache = cache
        self._retry_policy = retry_policy or RetryPolicy()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._holdings_ttl = holdings_ttl_seconds
        self._confirmation_rounds = confirmation_rounds
        self._max_group_size = min(max_group_size, MAX_GROUP_SIZE)

    @property
    def accounts(self) -> SigningAccounts:
        return self._accounts

    @property
    def max_group_size(self) -> int:
        return self._max_group_size

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            lambda: self._rate_limiter.run(fn),
            self._retry_policy,
            operation=operation,
        )

    # Account reads

    async def _account_view(self, wallet_address: str, kind: AccountQueryKind) -> list[Mapping[str, Any]]:
        key = holdings_cache_key(wallet_address, kind)
        cached = await self._cache.get(key)
        if cached is not None:
            return list(cached)

        info = await self._call(
            "account_information", lambda: self._remote.account_information(wallet_address)
        )
        entries = [dict(entry) for entry in info.get(kind.value) or []]
        await self._cache.set(key, entries, ttl_seconds=self._holdings_ttl)
        return entries

    async def get_account_asset_holdings(self, wallet_address: str) -> list[AssetHolding]:
        entries = await self._account_view(wallet_address, AccountQueryKind.ASSETS)
        return [AssetHolding.from_payload(entry) for entry in entries]

    async def get_created_assets(self, wallet_address: str) -> list[Mapping[str, Any]]:
        return await self._account_view(wallet_address, AccountQueryKind.CREATED_ASSETS)

    async def get_opt_in_status(self, wallet_address: str, asset_id: int) -> OptInStatus:
        for holding in await self.get_account_asset_holdings(wallet_address):
            if holding.asset_id == asset_id:
                return OptInStatus(opted_in=True, balance=holding.amount)
        return OptInStatus(opted_in=False, balance=0)

    async def invalidate_holdings(self, wallet_address: str) -> None:
        for kind in AccountQueryKind:
            await self._cache.delete(holdings_cache_key(wallet_address, kind))

    async def check_sender_balance(self, wallet_address: str, asset_id: int, amount: int) -> int:
        """Read the sender's live balance and fail when it cannot cover ``amount``."""

        info = await self._call(
            "account_information", lambda: self._remote.account_information(wallet_address)
        )
        balance = 0
        for entry in info.get(AccountQueryKind.ASSETS.value) or []:
            holding = AssetHolding.from_payload(entry)
            if holding.asset_id == asset_id:
                balance = holding.amount
                break
        if balance < amount:
            raise InsufficientFundsError(wallet_address, balance=balance, requested=amount)
        return balance

    # Transfers

    async def build_and_submit_group(self, items: Sequence[ClaimItem], asset_id: int) -> SettlementResult:
        """Pay every item from the claim account in one atomic group."""

        if not items:
            raise TransferValidationError("Cannot submit an empty transfer group")
        if len(items) > self._max_group_size:
            raise TransferValidationError(
                f"Group of {len(items)} transfers exceeds the limit of {self._max_group_size}"
            )
        for item in items:
            _validate_transfer(item.amount, item.wallet_address)

        total = sum(item.amount for item in items)
        sender = self._accounts.claim
        try:
            await self.check_sender_balance(sender.address, asset_id, total)
            params = await self._suggested_params()
            txns = [
                transaction.AssetTransferTxn(
                    sender=sender.address,
                    sp=params,
                    receiver=item.wallet_address,
                    amt=item.amount,
                    index=asset_id,
                )
                for item in items
            ]
            transaction.assign_group_id(txns)
            signed = _sign(sender, txns)
            return await self._submit_and_confirm(signed, amount=total)
        except RewardsError as exc:
            return _failed_transfer("group", exc, amount=total)

    async def claim_token(self, asset_id: int, amount: int, receiver: str) -> SettlementResult:
        _validate_transfer(amount, receiver)
        return await self._transfer(
            "claim",
            asset_id=asset_id,
            amount=amount,
            receiver=receiver,
            signer=self._accounts.claim,
            funding_address=self._accounts.claim.address,
        )

    async def tip_token(self, asset_id: int, amount: int, receiver: str, sender: str) -> SettlementResult:
        _validate_transfer(amount, receiver)
        _validate_address(sender)
        return await self._transfer(
            "tip",
            asset_id=asset_id,
            amount=amount,
            receiver=receiver,
            signer=self._accounts.clawback,
            funding_address=sender,
            revocation_target=sender,
        )

    async def purchase_item(self, asset_id: int, amount: int, sender: str) -> SettlementResult:
        """Claw ``amount`` back from ``sender`` into the clawback account."""

        _validate_transfer(amount, sender)
        clawback = self._accounts.clawback
        return await self._transfer(
            "purchase",
            asset_id=asset_id,
            amount=amount,
            receiver=clawback.address,
            signer=clawback,
            funding_address=sender,
            revocation_target=sender,
        )

    async def _transfer(
        self,
        kind: str,
        *,
        asset_id: int,
        amount: int,
        receiver: str,
        signer: SigningAccount,
        funding_address: str,
        revocation_target: str | None = None,
    ) -> SettlementResult:
        try:
            await self.check_sender_balance(funding_address, asset_id, amount)
            params = await self._suggested_params()
            txn = transaction.AssetTransferTxn(
                sender=signer.address,
                sp=params,
                receiver=receiver,
                amt=amount,
                index=asset_id,
                revocation_target=revocation_target,
            )
            return await self._submit_and_confirm(_sign(signer, [txn]), amount=amount)
        except RewardsError as exc:
            return _failed_transfer(kind, exc, amount=amount)

    async def _suggested_params(self) -> transaction.SuggestedParams:
        payload = await self._call("suggested_params", self._remote.suggested_params)
        min_fee = int(payload.get("min-fee", 1000))
        last_round = int(payload.get("last-round", 0))
        return transaction.SuggestedParams(
            fee=min_fee,
            first=last_round,
            last=last_round + 1000,
            gh=payload.get("genesis-hash"),
            gen=payload.get("genesis-id"),
            flat_fee=True,
            consensus_version=payload.get("consensus-version"),
            min_fee=min_fee,
        )

    async def _submit_and_confirm(
        self, signed: Sequence[transaction.SignedTransaction], *, amount: int
    ) -> SettlementResult:
        # Resubmitting identical signed bytes yields the same transaction id.
        tx_id = await self._call("submit", lambda: self._remote.submit(signed))
        confirmation = await self.wait_for_confirmation(tx_id)
        return SettlementResult(
            transaction_id=tx_id,
            confirmed_round=confirmation.confirmed_round,
            amount=amount,
        )

    async def wait_for_confirmation(self, tx_id: str) -> ConfirmationInfo:
        return await self._call(
            "await_confirmation",
            lambda: self._remote.await_confirmation(tx_id, self._confirmation_rounds),
        )

    async def search_transactions(self, filters: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._call("search_transactions", lambda: self._remote.search_transactions(filters))


def _sign(signer: SigningAccount, txns: list[transaction.Transaction]) -> list[transaction.SignedTransaction]:
    return AccountTransactionSigner(signer.private_key).sign_transactions(txns, list(range(len(txns))))


def _validate_address(address: str) -> None:
    if not address or not encoding.is_valid_address(address):
        raise TransferValidationError(f"Invalid wallet address: {address!r}")


def _validate_transfer(amount: int, receiver: str) -> None:
    if amount <= 0:
        raise TransferValidationError(f"Transfer amount must be positive, got {amount}")
    _validate_address(receiver)


def _failed_transfer(kind: str, error: RewardsError, *, amount: int) -> SettlementResult:
    message = f"Failed the token transfer: {describe_transfer_error(error)}"
    logger.error("Token transfer failed", transfer=kind, amount=amount, error=message)
    return SettlementResult.failed(message, amount=amount)


__all__ = [
    "AlgorandClient",
    "MAX_GROUP_SIZE",
    "SigningAccount",
    "SigningAccounts",
    "holdings_cache_key",
]
