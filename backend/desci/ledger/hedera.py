"""Hedera implementation of ``LedgerClient`` on top of hiero-sdk-python.

Every call is a single request/receipt round trip executed in a worker thread.
There is no retry or idempotency handling here; SDK failures surface as
``LedgerError`` carrying the SDK message.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import httpx
from hiero_sdk_python import (
    AccountId,
    Client,
    Network,
    PrivateKey,
    ResponseCode,
    TokenCreateTransaction,
    TokenId,
    TopicCreateTransaction,
    TopicId,
    TopicInfoQuery,
    TopicMessageSubmitTransaction,
    TransferTransaction,
)

from desci.core.config import Settings
from desci.core.exceptions import ConfigurationError, LedgerError
from desci.ledger.base import TransferResult
from desci.utils.logger import log_ledger_call, logger


async def resolve_evm_address(mirror_url: str, evm_address: str, timeout: float = 10.0) -> str:
    """Look up the account id behind an EVM address on the mirror node."""
    url = f"{mirror_url.rstrip('/')}/api/v1/accounts/{evm_address}"
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url)
        response.raise_for_status()

    account = response.json().get("account")
    if not account:
        raise ConfigurationError(f"No account found for EVM address {evm_address}")
    return account


class HederaLedger:
    def __init__(self, client: Client, operator_id: AccountId, operator_key: PrivateKey):
        self._client = client
        self._operator_id = operator_id
        self._operator_key = operator_key

    @classmethod
    async def connect(cls, settings: Settings) -> "HederaLedger":
        if not settings.OPERATOR_KEY or not (settings.OPERATOR_ID or settings.OPERATOR_ADDRESS):
            raise ConfigurationError("Set OPERATOR_ID (or OPERATOR_ADDRESS) and OPERATOR_KEY in .env")

        client = Client(Network(network=settings.HEDERA_NETWORK))

        if settings.OPERATOR_ID:
            operator_id = AccountId.from_string(settings.OPERATOR_ID)
        else:
            account = await resolve_evm_address(settings.HEDERA_MIRROR_URL, settings.OPERATOR_ADDRESS)
            operator_id = AccountId.from_string(account)

        try:
            operator_key = PrivateKey.from_string(settings.OPERATOR_KEY)
        except Exception as e:
            raise ConfigurationError(f"Invalid OPERATOR_KEY: {e}") from e

        client.set_operator(operator_id, operator_key)
        logger.info(f"Initialized Hedera client with operator: {operator_id}")
        return cls(client, operator_id, operator_key)

    @property
    def operator_account_id(self) -> str:
        return str(self._operator_id)

    async def _run(self, operation: str, fn: Callable[[], Any], metadata: Optional[dict] = None) -> Any:
        start = time.time()
        try:
            result = await asyncio.to_thread(fn)
        except LedgerError as e:
            log_ledger_call(operation, False, (time.time() - start) * 1000, metadata, error=str(e))
            raise
        except Exception as e:
            log_ledger_call(operation, False, (time.time() - start) * 1000, metadata, error=str(e))
            raise LedgerError(str(e)) from e
        log_ledger_call(operation, True, (time.time() - start) * 1000, metadata)
        return result

    def _execute(self, transaction) -> Any:
        receipt = transaction.freeze_with(self._client).sign(self._operator_key).execute(self._client)
        if receipt.status != ResponseCode.SUCCESS:
            raise LedgerError(f"Transaction failed with status {receipt.status}")
        return receipt

    async def create_topic(self, memo: str) -> str:
        def _create():
            public_key = self._operator_key.public_key()
            tx = TopicCreateTransaction(memo=memo, admin_key=public_key, submit_key=public_key)
            return str(self._execute(tx).topic_id)

        return await self._run("create_topic", _create, {"memo": memo})

    async def submit_message(self, topic_id: str, message: str) -> str:
        def _submit():
            tx = TopicMessageSubmitTransaction(topic_id=TopicId.from_string(topic_id), message=message)
            receipt = self._execute(tx)
            return str(receipt.status)

        return await self._run("submit_message", _submit, {"topic_id": topic_id, "length": len(message)})

    async def get_topic_info(self, topic_id: str) -> dict:
        def _query():
            info = TopicInfoQuery().set_topic_id(TopicId.from_string(topic_id)).execute(self._client)
            return {"topic_id": topic_id, "memo": getattr(info, "memo", None)}

        return await self._run("get_topic_info", _query, {"topic_id": topic_id})

    async def create_token(self, name: str, symbol: str, initial_supply: int, decimals: int = 2) -> str:
        def _create():
            public_key = self._operator_key.public_key()
            tx = (
                TokenCreateTransaction()
                .set_token_name(name)
                .set_token_symbol(symbol)
                .set_decimals(decimals)
                .set_initial_supply(int(initial_supply))
                .set_treasury_account_id(self._operator_id)
                .set_admin_key(public_key)
                .set_supply_key(public_key)
                .set_freeze_key(public_key)
                .set_wipe_key(public_key)
            )
            return str(self._execute(tx).token_id)

        return await self._run("create_token", _create, {"name": name, "symbol": symbol})

    async def transfer_token(self, token_id: str, recipient_id: str, amount: int) -> TransferResult:
        def _transfer():
            token = TokenId.from_string(token_id)
            recipient = AccountId.from_string(recipient_id)
            tx = (
                TransferTransaction()
                .add_token_transfer(token, self._operator_id, -amount)
                .add_token_transfer(token, recipient, amount)
            )
            receipt = self._execute(tx)
            return TransferResult(transaction_id=str(tx.transaction_id), status=str(receipt.status))

        return await self._run(
            "transfer_token",
            _transfer,
            {"token_id": token_id, "recipient": recipient_id, "amount": amount},
        )

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close:
            await asyncio.to_thread(close)
