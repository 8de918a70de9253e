import base64
import json

import httpx
import pytest
from algosdk import encoding, transaction
from algosdk.atomic_transaction_composer import AccountTransactionSigner

from karma_rewards.blockchain.remote import AlgodRemoteLedger, encode_signed_transactions
from karma_rewards.errors import ConfirmationTimeout, RemoteRejectedError, TransientRemoteError

ALGOD = "https://algod.example"
INDEXER = "https://indexer.example"
GENESIS_HASH = "SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI="


def _ledger(handler, token: str = "secret") -> AlgodRemoteLedger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AlgodRemoteLedger(algod_url=ALGOD + "/", indexer_url=INDEXER, api_token=token, http_client=client)


def _signed_transfer(make_account) -> transaction.SignedTransaction:
    sender = make_account()
    params = transaction.SuggestedParams(fee=1000, first=1, last=1001, gh=GENESIS_HASH, flat_fee=True)
    txn = transaction.AssetTransferTxn(sender.address, params, make_account().address, 5, 77)
    (signed,) = AccountTransactionSigner(sender.private_key).sign_transactions([txn], [0])
    return signed


@pytest.mark.asyncio
async def test_account_information_sends_api_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"address": "ADDR", "assets": [{"asset-id": 1, "amount": 3}]})

    ledger = _ledger(handler)
    payload = await ledger.account_information("ADDR")

    assert payload["assets"][0]["amount"] == 3
    assert str(seen[0].url) == f"{ALGOD}/v2/accounts/ADDR"
    assert seen[0].headers["X-Algo-API-Token"] == "secret"


@pytest.mark.asyncio
async def test_token_header_omitted_without_token():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "X-Algo-API-Token" not in request.headers
        return httpx.Response(200, json={"last-round": 10})

    ledger = _ledger(handler, token="")
    assert (await ledger.suggested_params())["last-round"] == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_overloaded_node_is_transient(status_code):
    ledger = _ledger(lambda request: httpx.Response(status_code, json={"message": "busy"}))

    with pytest.raises(TransientRemoteError) as excinfo:
        await ledger.suggested_params()
    assert excinfo.value.status_code == status_code


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientRemoteError):
        await _ledger(handler).account_information("ADDR")


@pytest.mark.asyncio
async def test_client_errors_are_rejections():
    ledger = _ledger(lambda request: httpx.Response(400, json={"message": "asset 7 missing from ADDR"}))

    with pytest.raises(RemoteRejectedError) as excinfo:
        await ledger.account_information("ADDR")
    assert str(excinfo.value) == "asset 7 missing from ADDR"


@pytest.mark.asyncio
async def test_submit_posts_raw_signed_bytes(make_account):
    signed = _signed_transfer(make_account)
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["Content-Type"]
        captured["body"] = request.content
        return httpx.Response(200, json={"txId": signed.get_txid()})

    tx_id = await _ledger(handler).submit([signed])

    assert tx_id == signed.get_txid()
    assert captured["content_type"] == "application/x-binary"
    assert captured["body"] == base64.b64decode(encoding.msgpack_encode(signed))
    assert encode_signed_transactions([signed, signed]) == captured["body"] * 2


@pytest.mark.asyncio
async def test_await_confirmation_waits_for_blocks():
    polls = {"pending": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v2/status":
            return httpx.Response(200, json={"last-round": 100})
        if path.startswith("/v2/transactions/pending/"):
            polls["pending"] += 1
            if polls["pending"] < 3:
                return httpx.Response(200, json={"confirmed-round": 0, "pool-error": ""})
            return httpx.Response(200, json={"confirmed-round": 103, "pool-error": ""})
        if path.startswith("/v2/status/wait-for-block-after/"):
            return httpx.Response(200, json={"last-round": int(path.rsplit("/", 1)[-1]) + 1})
        return httpx.Response(404)

    info = await _ledger(handler).await_confirmation("TX1", 5)

    assert info.confirmed_round == 103
    assert polls["pending"] == 3


@pytest.mark.asyncio
async def test_await_confirmation_times_out():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/status":
            return httpx.Response(200, json={"last-round": 100})
        if request.url.path.startswith("/v2/transactions/pending/"):
            return httpx.Response(200, json={"confirmed-round": 0})
        return httpx.Response(200, json={})

    with pytest.raises(ConfirmationTimeout):
        await _ledger(handler).await_confirmation("TX1", 2)


@pytest.mark.asyncio
async def test_pool_error_is_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/status":
            return httpx.Response(200, json={"last-round": 100})
        return httpx.Response(200, json={"confirmed-round": 0, "pool-error": "overspend"})

    with pytest.raises(RemoteRejectedError, match="overspend"):
        await _ledger(handler).await_confirmation("TX1", 5)


@pytest.mark.asyncio
async def test_search_transactions_hits_indexer():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=json.dumps({"transactions": [{"id": "T"}]}).encode())

    payload = await _ledger(handler).search_transactions({"asset-id": 9, "address": None, "tx-type": "axfer"})

    assert payload["transactions"] == [{"id": "T"}]
    assert seen[0].url.host == "indexer.example"
    assert dict(seen[0].url.params) == {"asset-id": "9", "tx-type": "axfer"}
