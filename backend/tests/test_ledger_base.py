import asyncio

from desci.ledger.base import (
    MAIN_TOPIC_MEMO,
    get_or_create_main_topic,
    initialize_platform_token,
    is_account_id,
)

from tests.mocks import FakeLedger


def test_existing_main_topic_is_reused():
    ledger = FakeLedger(known_topics=["0.0.1000"])
    assert asyncio.run(get_or_create_main_topic(ledger, "0.0.1000")) == "0.0.1000"
    assert list(ledger.topics) == ["0.0.1000"]


def test_unknown_main_topic_creates_a_new_one():
    ledger = FakeLedger()
    topic_id = asyncio.run(get_or_create_main_topic(ledger, "0.0.999"))
    assert topic_id != "0.0.999"
    assert ledger.topics[topic_id] == MAIN_TOPIC_MEMO

    assert asyncio.run(get_or_create_main_topic(ledger, None)) in ledger.topics


def test_platform_token_created_with_supply():
    ledger = FakeLedger()
    token_id = asyncio.run(initialize_platform_token(ledger, "DeSci Token", "DSCI", 100000, 2))
    assert ledger.tokens[token_id] == ("DeSci Token", "DSCI", 100000, 2)


def test_account_id_shape():
    assert is_account_id("0.0.1234")
    assert not is_account_id("pub1")
    assert not is_account_id("0x7a3b")
    assert not is_account_id(None)
