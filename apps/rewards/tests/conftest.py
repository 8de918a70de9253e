import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

import pytest
import pytest_asyncio
from algosdk import account
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from karma_rewards.blockchain.client import SigningAccount, SigningAccounts
from karma_rewards.blockchain.retry import RateLimiter, RetryPolicy
from karma_rewards.blockchain.types import ConfirmationInfo
from karma_rewards.core.settings import Settings
from karma_rewards.db.base import Base
from karma_rewards.errors import ConfirmationTimeout
from karma_rewards.observability.settlement import get_settlement_store
from karma_rewards.runtime import RewardsRuntime, build_rewards_runtime
from karma_rewards.services.cache import InMemoryCache
from karma_rewards.services.notifications import InMemoryNotifier

import karma_rewards.models  # noqa: F401


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

KARMA_ASSET_ID = 1088771340
GENESIS_HASH = "SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI="


def new_account() -> SigningAccount:
    private_key, address = account.generate_account()
    return SigningAccount(address=address, private_key=private_key)


class FakeRemoteLedger:
    """In-memory ledger that applies submitted asset transfers to its holdings."""

    def __init__(self) -> None:
        self.holdings: dict[str, dict[int, int]] = {}
        self.created_assets: dict[str, list[dict[str, Any]]] = {}
        self.account_calls: list[str] = []
        self.submissions: list[list[Any]] = []
        self.confirmations: list[str] = []
        self.searches: list[Mapping[str, Any]] = []
        self.reject: Callable[[list[Any]], Exception | None] | None = None
        self.submit_errors: list[Exception] = []
        self.unconfirmed: set[str] = set()
        self.on_submit: Callable[[list[Any]], Awaitable[None]] | None = None
        self.round = 1000

    def opt_in(self, address: str, asset_id: int = KARMA_ASSET_ID, amount: int = 0) -> None:
        self.holdings.setdefault(address, {})[asset_id] = amount

    def balance(self, address: str, asset_id: int = KARMA_ASSET_ID) -> int | None:
        return self.holdings.get(address, {}).get(asset_id)

    def submitted_transfers(self) -> list[list[tuple[str, int]]]:
        return [[(stxn.transaction.receiver, stxn.transaction.amount) for stxn in group] for group in self.submissions]

    async def account_information(self, address: str) -> Mapping[str, Any]:
        self.account_calls.append(address)
        assets = [
            {"asset-id": asset_id, "amount": amount, "is-frozen": False}
            for asset_id, amount in self.holdings.get(address, {}).items()
        ]
        return {"address": address, "assets": assets, "created-assets": self.created_assets.get(address, [])}

    async def suggested_params(self) -> Mapping[str, Any]:
        return {
            "min-fee": 1000,
            "fee": 0,
            "last-round": self.round,
            "genesis-hash": GENESIS_HASH,
            "genesis-id": "testnet-v1.0",
            "consensus-version": "future",
        }

    async def submit(self, signed: Sequence[Any]) -> str:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        group = list(signed)
        self.submissions.append(group)
        if self.on_submit is not None:
            await self.on_submit(group)
        error = self.reject(group) if self.reject is not None else None
        if error is not None:
            raise error
        for stxn in group:
            txn = stxn.transaction
            source = txn.revocation_target or txn.sender
            self.holdings.setdefault(source, {})[txn.index] = self.holdings.get(source, {}).get(txn.index, 0) - txn.amount
            self.holdings.setdefault(txn.receiver, {})[txn.index] = (
                self.holdings.get(txn.receiver, {}).get(txn.index, 0) + txn.amount
            )
        return group[0].get_txid()

    async def pending_transaction(self, tx_id: str) -> Mapping[str, Any]:
        return {"confirmed-round": self.round + 1}

    async def await_confirmation(self, tx_id: str, max_rounds: int) -> ConfirmationInfo:
        if tx_id in self.unconfirmed:
            raise ConfirmationTimeout(tx_id, max_rounds)
        self.confirmations.append(tx_id)
        self.round += 1
        return ConfirmationInfo(tx_id=tx_id, confirmed_round=self.round)

    async def search_transactions(self, filters: Mapping[str, Any]) -> Mapping[str, Any]:
        self.searches.append(filters)
        return {"transactions": [], "current-round": self.round}


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settlement_store():
    get_settlement_store().reset()
    yield
    get_settlement_store().reset()


@pytest.fixture
def make_account() -> Callable[[], SigningAccount]:
    return new_account


@pytest.fixture
def fake_remote() -> FakeRemoteLedger:
    return FakeRemoteLedger()


@pytest.fixture
def signing_accounts() -> SigningAccounts:
    return SigningAccounts(claim=new_account(), clawback=new_account())


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def rewards_settings() -> Settings:
    return Settings(
        _env_file=None,
        replenish_token_address=None,
        rewards_slack_webhook_url=None,
    )


@pytest_asyncio.fixture
async def runtime(session_factory, fake_remote, signing_accounts, notifier, rewards_settings) -> RewardsRuntime:
    built = build_rewards_runtime(
        session_factory=session_factory,
        settings=rewards_settings,
        remote=fake_remote,
        cache=InMemoryCache(),
        notifier=notifier,
        accounts=signing_accounts,
        retry_policy=RetryPolicy(max_attempts=3, base_backoff_seconds=0.0),
        rate_limiter=RateLimiter(concurrency=4),
    )
    await built.ledger.register_asset(KARMA_ASSET_ID, name="Karma", unit_name="KRMA")
    fake_remote.opt_in(signing_accounts.claim.address, KARMA_ASSET_ID, 10_000_000)
    return built


@pytest.fixture
def karma_asset_id() -> int:
    return KARMA_ASSET_ID


@pytest.fixture
def seed_wallet(runtime, fake_remote):
    """Register a user wallet with an unclaimed balance; returns the wallet address."""

    async def _seed(
        user_id: str,
        temporary_tokens: int,
        *,
        opted_in: bool = True,
        on_chain: int = 0,
        asset_id: int = KARMA_ASSET_ID,
    ) -> str:
        address = new_account().address
        if opted_in:
            fake_remote.opt_in(address, asset_id, on_chain)
        await runtime.ledger.sync_wallet(user_id, address, asset_id, opted_in=opted_in, converted_tokens=on_chain)
        if temporary_tokens:
            await runtime.ledger.increment_temporary(user_id, address, asset_id, temporary_tokens)
        return address

    return _seed
