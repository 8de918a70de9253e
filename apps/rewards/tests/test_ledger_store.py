import pytest
import pytest_asyncio

from karma_rewards.errors import LedgerUnderflowError, RecordNotFoundError
from karma_rewards.services.rewards import LedgerStore

ASSET_ID = 42
WALLET = "WALLET-A"


@pytest_asyncio.fixture
async def ledger(session_factory) -> LedgerStore:
    store = LedgerStore(session_factory)
    await store.register_asset(ASSET_ID, name="Karma", unit_name="KRMA")
    return store


@pytest.mark.asyncio
async def test_increment_creates_and_accumulates(ledger):
    assert await ledger.increment_temporary("user-1", WALLET, ASSET_ID, 30) == 30
    assert await ledger.increment_temporary("user-1", WALLET, ASSET_ID, 12) == 42

    record = await ledger.find_record(WALLET, ASSET_ID)
    assert record.user_id == "user-1"
    assert record.temporary_tokens == 42


@pytest.mark.asyncio
async def test_decrement_refuses_to_go_negative(ledger):
    await ledger.increment_temporary("user-1", WALLET, ASSET_ID, 10)

    with pytest.raises(LedgerUnderflowError) as excinfo:
        await ledger.increment_temporary("user-1", WALLET, ASSET_ID, -11)

    assert excinfo.value.current == 10
    assert (await ledger.find_record(WALLET, ASSET_ID)).temporary_tokens == 10
    assert await ledger.increment_temporary("user-1", WALLET, ASSET_ID, -10) == 0


@pytest.mark.asyncio
async def test_decrement_of_unknown_record(ledger):
    with pytest.raises(RecordNotFoundError):
        await ledger.increment_temporary("user-1", "MISSING", ASSET_ID, -1)


@pytest.mark.asyncio
async def test_find_above_threshold_is_strict(ledger):
    await ledger.increment_temporary("user-1", "W1", ASSET_ID, 500)
    await ledger.increment_temporary("user-2", "W2", ASSET_ID, 501)
    await ledger.increment_temporary("user-2", "W3", ASSET_ID, 900)

    records = await ledger.find_above_threshold(ASSET_ID, 500)
    assert {record.wallet_address for record in records} == {"W2", "W3"}
    assert all(record.temporary_tokens > 500 for record in records)

    only_user = await ledger.find_above_threshold(ASSET_ID, 0, "user-1")
    assert [record.wallet_address for record in only_user] == ["W1"]


@pytest.mark.asyncio
async def test_sync_wallet_updates_on_chain_view(ledger):
    record = await ledger.sync_wallet("user-1", WALLET, ASSET_ID, opted_in=True, converted_tokens=75)
    assert record.opted_in is True
    assert record.converted_tokens == 75
    assert record.temporary_tokens == 0
    assert record.last_synced_at is not None

    await ledger.increment_temporary("user-1", WALLET, ASSET_ID, 5)
    record = await ledger.sync_wallet("user-1", WALLET, ASSET_ID, opted_in=False, converted_tokens=0)
    assert record.opted_in is False
    assert record.temporary_tokens == 5


@pytest.mark.asyncio
async def test_wallets_for_user_spans_assets(ledger):
    await ledger.register_asset(7, name="Enlightenment", unit_name="ENLT")
    await ledger.increment_temporary("user-1", "W2", ASSET_ID, 1)
    await ledger.increment_temporary("user-1", "W1", 7, 1)
    await ledger.increment_temporary("user-2", "W3", ASSET_ID, 1)

    assert await ledger.wallets_for_user("user-1") == ["W1", "W2"]
    assert (await ledger.get_asset_by_unit_name("ENLT")).asset_id == 7
    assert [asset.asset_id for asset in await ledger.list_assets()] == [7, ASSET_ID]
