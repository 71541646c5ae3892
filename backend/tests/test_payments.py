import asyncio
import json

import pytest

from desci.core.exceptions import PaymentError, StorageError
from desci.models.schemas import ChatSession, Paper, PaymentStatus, SessionStage
from desci.services.blob_store import InMemoryBlobStore
from desci.services.paper_store import InMemoryPaperStore
from desci.services.payments import LEDGER, PaidAccessRegistry, PaymentProcessor
from desci.services.research_agent import ResearchAgent

from tests.mocks import FakeLedger


def _session(*papers):
    session = ChatSession(session_id="s1")
    session.set_related_papers(list(papers))
    return session


def _paper(paper_id, publisher_id, fee):
    return Paper(paper_id=paper_id, title=paper_id.upper(), authors=["A"], abstract="x", publisher_id=publisher_id, fee=fee)


def test_quote_math_and_stages():
    session = _session(_paper("a", "pub", 10), _paper("b", "pub", 20))
    assert session.stage == SessionStage.PAPERS_SELECTED

    quote = session.calculate_quote(5)
    assert quote.papers_cost == 30
    assert quote.platform_fee == 1.5
    assert quote.total_cost == 31.5
    assert [p.paper_id for p in quote.papers] == ["a", "b"]
    assert session.stage == SessionStage.QUOTED


def test_new_selection_resets_quote_and_payment():
    session = _session(_paper("a", "pub", 10))
    session.calculate_quote()
    session.payment_status = PaymentStatus.PAID

    session.set_related_papers([_paper("b", "pub", 1)])
    assert session.quote is None
    assert session.payment_status == PaymentStatus.PENDING


def test_simulated_payment_says_so():
    session = _session(_paper("a", "pub", 10))
    session.calculate_quote()

    record = asyncio.run(PaymentProcessor().settle(session))
    assert record.mode == "simulated"
    assert record.transaction_ids == []
    assert "no value was transferred" in record.note


def test_settle_without_quote_fails():
    with pytest.raises(PaymentError):
        asyncio.run(PaymentProcessor().settle(_session(_paper("a", "pub", 1))))


def test_unknown_mode_rejected():
    with pytest.raises(PaymentError):
        PaymentProcessor(mode="barter")


def test_ledger_payment_transfers_to_account_publishers():
    ledger = FakeLedger()
    processor = PaymentProcessor(mode=LEDGER, ledger=ledger, token_id="0.0.7777", settlement_topic_id="0.0.1000")
    session = _session(_paper("a", "0.0.3003", 12.5), _paper("b", "pub-without-account", 4))
    session.calculate_quote()

    record = asyncio.run(processor.settle(session))

    assert ledger.transfers == [("0.0.7777", "0.0.3003", 1250)]
    assert len(record.transaction_ids) == 1
    assert record.note.endswith(": b")
    topic, message = ledger.messages[0]
    assert topic == "0.0.1000"
    assert json.loads(message)["papers"] == ["a", "b"]


def test_ledger_payment_needs_token():
    processor = PaymentProcessor(mode=LEDGER, ledger=FakeLedger())
    session = _session(_paper("a", "0.0.3003", 1))
    session.calculate_quote()
    with pytest.raises(PaymentError):
        asyncio.run(processor.settle(session))


def test_failed_transfer_marks_session_failed():
    ledger = FakeLedger()
    ledger.fail_on.add("transfer_token")
    store = InMemoryPaperStore()
    asyncio.run(store.insert_paper(_paper("a", "0.0.3003", 3)))
    registry = PaidAccessRegistry()
    agent = ResearchAgent(
        store,
        InMemoryBlobStore(),
        PaymentProcessor(mode=LEDGER, ledger=ledger, token_id="0.0.7777"),
        registry,
    )

    async def run():
        session = await agent.start_session()
        await agent.handle(session, "/search A")
        await agent.handle(session, "/quote")
        turn = await agent.handle(session, "/pay")
        return session, turn

    session, turn = asyncio.run(run())
    assert session.payment_status == PaymentStatus.FAILED
    assert "Payment failed" in turn.reply
    assert len(registry) == 0


class FlakyAccessStore(InMemoryPaperStore):
    """Store whose access counter is down after payment."""

    def __init__(self, reads_fail=False):
        super().__init__()
        self.reads_fail = reads_fail

    async def record_access(self, paper_id):
        raise StorageError("mongo down")

    async def get_paper(self, paper_id):
        if self.reads_fail:
            raise StorageError("mongo down")
        return await super().get_paper(paper_id)


def _pay_with(store):
    asyncio.run(store.insert_paper(_paper("a", "pub", 3)))
    registry = PaidAccessRegistry()
    agent = ResearchAgent(store, InMemoryBlobStore(), PaymentProcessor(), registry)

    async def run():
        session = await agent.start_session()
        await agent.handle(session, "/search A")
        await agent.handle(session, "/quote")
        turn = await agent.handle(session, "/pay")
        again = await agent.handle(session, "/pay")
        return session.session_id, turn, again

    session_id, turn, again = asyncio.run(run())
    return asyncio.run(store.get_session(session_id)), turn, again, registry


def test_paid_state_survives_access_counter_failure():
    persisted, turn, again, registry = _pay_with(FlakyAccessStore())

    assert persisted.payment_status == PaymentStatus.PAID
    assert "RESEARCH FINDINGS" in turn.reply
    assert [p.paper_id for p in turn.papers] == ["a"]
    assert "already paid" in again.reply
    assert registry.is_paid("a")


def test_paid_state_survives_unreadable_papers():
    persisted, turn, again, _ = _pay_with(FlakyAccessStore(reads_fail=True))

    assert persisted.payment_status == PaymentStatus.PAID
    assert "RESEARCH FINDINGS" in turn.reply
    assert turn.papers == []
    assert "already paid" in again.reply
