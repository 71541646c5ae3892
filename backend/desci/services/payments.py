"""Quote settlement.

``simulated`` mode moves no value: it only marks the session paid and says so
in the payment record. ``ledger`` mode transfers the platform token to each
publisher that has a ledger account id and only reports success when every
transfer receipt succeeded.
"""

from __future__ import annotations

import json
import time
from typing import Iterable, List, Optional, Set

from desci.core.exceptions import LedgerError, PaymentError
from desci.ledger.base import LedgerClient, is_account_id
from desci.models.schemas import ChatSession, PaymentRecord, utcnow
from desci.utils.logger import log_performance, logger

SIMULATED = "simulated"
LEDGER = "ledger"


class PaidAccessRegistry:
    """Paper ids paid for in this process. Not shared and not persisted."""

    def __init__(self):
        self._paid: Set[str] = set()

    def mark_paid(self, paper_ids: Iterable[str]) -> None:
        self._paid.update(paper_ids)

    def is_paid(self, paper_id: str) -> bool:
        return paper_id in self._paid

    def __len__(self) -> int:
        return len(self._paid)


class PaymentProcessor:
    def __init__(
        self,
        mode: str = SIMULATED,
        ledger: Optional[LedgerClient] = None,
        token_id: Optional[str] = None,
        token_decimals: int = 2,
        settlement_topic_id: Optional[str] = None,
    ):
        if mode not in (SIMULATED, LEDGER):
            raise PaymentError(f"Unknown payment mode: {mode}")
        self.mode = mode
        self._ledger = ledger
        self._token_id = token_id
        self._decimals = token_decimals
        self._topic_id = settlement_topic_id

    def _to_units(self, fee: float) -> int:
        return int(round(fee * (10 ** self._decimals)))

    async def settle(self, session: ChatSession) -> PaymentRecord:
        """Settle the session's quote or raise PaymentError."""
        if session.quote is None:
            raise PaymentError("No quote to pay")

        start = time.time()
        if self.mode == SIMULATED:
            record = PaymentRecord(
                mode=SIMULATED,
                settled_at=utcnow(),
                note="Simulated payment: no value was transferred on the ledger",
            )
        else:
            record = await self._settle_on_ledger(session)

        log_performance(
            "settle_payment",
            (time.time() - start) * 1000,
            success=True,
            metadata={
                "session_id": session.session_id,
                "mode": record.mode,
                "total_cost": session.quote.total_cost,
                "transactions": len(record.transaction_ids),
            },
        )
        return record

    async def _settle_on_ledger(self, session: ChatSession) -> PaymentRecord:
        if self._ledger is None or not self._token_id:
            raise PaymentError("Ledger payments need a ledger client and PLATFORM_TOKEN_ID")

        transaction_ids: List[str] = []
        skipped: List[str] = []
        try:
            for paper in session.related_papers:
                if not is_account_id(paper.publisher_id):
                    skipped.append(paper.paper_id)
                    continue
                amount = self._to_units(paper.fee)
                if amount <= 0:
                    continue
                result = await self._ledger.transfer_token(self._token_id, paper.publisher_id, amount)
                transaction_ids.append(result.transaction_id)

            if self._topic_id:
                await self._ledger.submit_message(
                    self._topic_id,
                    json.dumps({
                        "type": "access-payment",
                        "sessionId": session.session_id,
                        "papers": [p.paper_id for p in session.related_papers],
                        "totalCost": session.quote.total_cost,
                        "transactions": transaction_ids,
                    }),
                )
        except LedgerError as e:
            logger.error(f"Ledger payment failed for session {session.session_id}: {e}")
            raise PaymentError(str(e)) from e

        note = None
        if skipped:
            note = f"Publishers without ledger accounts were not paid: {', '.join(skipped)}"
        return PaymentRecord(mode=LEDGER, transaction_ids=transaction_ids, settled_at=utcnow(), note=note)
