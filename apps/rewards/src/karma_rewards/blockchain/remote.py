"""Narrow interface over the algod and indexer REST surfaces."""

from __future__ import annotations

import base64
from typing import Any, Mapping, Protocol, Sequence

import httpx
from algosdk import encoding
from algosdk.transaction import SignedTransaction
from loguru import logger

from karma_rewards.blockchain.types import ConfirmationInfo
from karma_rewards.errors import (
    ConfirmationTimeout,
    RemoteRejectedError,
    TransientRemoteError,
)

_TOKEN_HEADER = "X-Algo-API-Token"
_TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class RemoteLedger(Protocol):
    """Remote ledger operations consumed by the client adapter."""

    async def account_information(self, address: str) -> Mapping[str, Any]:
        ...

    async def suggested_params(self) -> Mapping[str, Any]:
        ...

    async def submit(self, signed: Sequence[SignedTransaction]) -> str:
        ...

    async def pending_transaction(self, tx_id: str) -> Mapping[str, Any]:
        ...

    async def await_confirmation(self, tx_id: str, max_rounds: int) -> ConfirmationInfo:
        ...

    async def search_transactions(self, filters: Mapping[str, Any]) -> Mapping[str, Any]:
        ...


def encode_signed_transactions(signed: Sequence[SignedTransaction]) -> bytes:
    """Concatenate msgpack-encoded signed transactions for raw submission."""

    return b"".join(base64.b64decode(encoding.msgpack_encode(txn)) for txn in signed)


class AlgodRemoteLedger:
    """httpx-backed implementation of :class:`RemoteLedger`."""

    def __init__(
        self,
        *,
        algod_url: str,
        indexer_url: str,
        api_token: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._algod_url = algod_url.rstrip("/")
        self._indexer_url = indexer_url.rstrip("/")
        self._headers = {_TOKEN_HEADER: api_token} if api_token else {}
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def account_information(self, address: str) -> Mapping[str, Any]:
        return await self._request("GET", f"{self._algod_url}/v2/accounts/{address}")

    async def suggested_params(self) -> Mapping[str, Any]:
        return await self._request("GET", f"{self._algod_url}/v2/transactions/params")

    async def submit(self, signed: Sequence[SignedTransaction]) -> str:
        payload = await self._request(
            "POST",
            f"{self._algod_url}/v2/transactions",
            content=encode_signed_transactions(signed),
            headers={"Content-Type": "application/x-binary"},
        )
        tx_id = payload.get("txId")
        if not isinstance(tx_id, str) or not tx_id:
            raise RemoteRejectedError("Node accepted the submission without a transaction id")
        return tx_id

    async def pending_transaction(self, tx_id: str) -> Mapping[str, Any]:
        return await self._request("GET", f"{self._algod_url}/v2/transactions/pending/{tx_id}")

    async def status(self) -> Mapping[str, Any]:
        return await self._request("GET", f"{self._algod_url}/v2/status")

    async def await_confirmation(self, tx_id: str, max_rounds: int) -> ConfirmationInfo:
        status = await self.status()
        start_round = int(status.get("last-round", 0)) + 1
        current_round = start_round
        while current_round < start_round + max(max_rounds, 1):
            pending = await self.pending_transaction(tx_id)
            confirmed_round = int(pending.get("confirmed-round") or 0)
            if confirmed_round > 0:
                return ConfirmationInfo(tx_id=tx_id, confirmed_round=confirmed_round, payload=pending)
            pool_error = pending.get("pool-error")
            if pool_error:
                raise RemoteRejectedError(f"Transaction {tx_id} rejected from pool: {pool_error}")
            await self._request(
                "GET", f"{self._algod_url}/v2/status/wait-for-block-after/{current_round}"
            )
            current_round += 1
        raise ConfirmationTimeout(tx_id, max_rounds)

    async def search_transactions(self, filters: Mapping[str, Any]) -> Mapping[str, Any]:
        params = {key: value for key, value in filters.items() if value is not None}
        return await self._request("GET", f"{self._indexer_url}/v2/transactions", params=params)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Mapping[str, Any]:
        request_headers = {**self._headers, **(headers or {})}
        try:
            response = await self._client.request(
                method, url, content=content, headers=request_headers, params=params
            )
        except httpx.TransportError as exc:
            raise TransientRemoteError(str(exc) or exc.__class__.__name__, url=url) from exc

        if response.status_code in _TRANSIENT_STATUS_CODES:
            raise TransientRemoteError(
                _error_message(response), url=url, status_code=response.status_code
            )
        if response.is_error:
            logger.debug("Remote ledger rejected request", url=url, status_code=response.status_code)
            raise RemoteRejectedError(
                _error_message(response), url=url, status_code=response.status_code
            )
        if not response.content:
            return {}
        try:
            parsed = response.json()
        except ValueError as exc:
            raise RemoteRejectedError("Remote ledger returned a non-JSON body", url=url) from exc
        return parsed if isinstance(parsed, Mapping) else {"data": parsed}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, Mapping) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


__all__ = ["AlgodRemoteLedger", "RemoteLedger", "encode_signed_transactions"]
