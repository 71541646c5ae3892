"""Narrow ledger interface used by the rest of the platform.

Only topic and token primitives are exposed; which network answers them is the
concern of the implementation (``desci.ledger.hedera``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol

from desci.core.exceptions import LedgerError
from desci.utils.logger import logger

ACCOUNT_ID_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

MAIN_TOPIC_MEMO = "DeSci Paper Registry"


@dataclass
class TransferResult:
    transaction_id: str
    status: str


class LedgerClient(Protocol):
    @property
    def operator_account_id(self) -> str: ...

    async def create_topic(self, memo: str) -> str: ...

    async def submit_message(self, topic_id: str, message: str) -> str: ...

    async def get_topic_info(self, topic_id: str) -> dict: ...

    async def create_token(self, name: str, symbol: str, initial_supply: int, decimals: int = 2) -> str: ...

    async def transfer_token(self, token_id: str, recipient_id: str, amount: int) -> TransferResult: ...

    async def close(self) -> None: ...


def is_account_id(value: Optional[str]) -> bool:
    return bool(value) and bool(ACCOUNT_ID_PATTERN.match(value))


async def get_or_create_main_topic(ledger: LedgerClient, topic_id: Optional[str]) -> str:
    """Reuse the configured registry topic or create a new one.

    Best effort existence check only; two processes starting together can
    both create a topic.
    """
    if topic_id:
        try:
            await ledger.get_topic_info(topic_id)
            logger.info(f"Using existing main registry topic: {topic_id}")
            return topic_id
        except LedgerError as e:
            logger.warning(f"Could not find specified main topic: {e}")

    logger.info("Creating new main registry topic...")
    new_topic_id = await ledger.create_topic(MAIN_TOPIC_MEMO)
    logger.info(f"Created new main registry topic: {new_topic_id}")
    return new_topic_id


async def initialize_platform_token(
    ledger: LedgerClient, name: str, symbol: str, initial_supply: int, decimals: int = 2
) -> str:
    logger.info(f"Creating platform token: {name} ({symbol})")
    token_id = await ledger.create_token(name, symbol, initial_supply, decimals)
    logger.info(f"Platform token created with ID: {token_id}")
    return token_id
