import asyncio

import pytest

from desci.core.exceptions import BlobNotFoundError, DuplicatePaperError, FileTooLargeError
from desci.models.schemas import ChatSession, Paper
from desci.services.blob_store import InMemoryBlobStore, prime_stream
from desci.services.paper_store import InMemoryPaperStore

from tests.mocks import FakeUpload


def _paper(paper_id, title, abstract="", keywords=None, fee=10.0):
    return Paper(
        paper_id=paper_id,
        title=title,
        authors=["A"],
        abstract=abstract,
        keywords=keywords or [],
        publisher_id="pub",
        fee=fee,
    )


def _seeded_store():
    store = InMemoryPaperStore()
    asyncio.run(store.insert_paper(_paper("a", "Deep learning for proteins", "folding structures")))
    asyncio.run(store.insert_paper(_paper("b", "Protein folding", "deep protein structure learning")))
    asyncio.run(store.insert_paper(_paper("c", "Coral reefs", "ocean warming", ["marine"])))
    return store


def test_search_ranks_by_overlap():
    store = _seeded_store()
    results = asyncio.run(store.search_papers("protein folding structure"))
    assert [p.paper_id for p in results] == ["b", "a"]


def test_search_matches_keywords_and_limits():
    store = _seeded_store()
    assert [p.paper_id for p in asyncio.run(store.search_papers("marine"))] == ["c"]
    assert len(asyncio.run(store.search_papers("deep", limit=1))) == 1


def test_blank_query_lists_everything():
    store = _seeded_store()
    assert len(asyncio.run(store.search_papers(""))) == 3
    assert len(asyncio.run(store.search_papers("   "))) == 3
    assert asyncio.run(store.search_papers("astrophysics")) == []


def test_duplicate_insert_rejected():
    store = _seeded_store()
    with pytest.raises(DuplicatePaperError):
        asyncio.run(store.insert_paper(_paper("a", "Again")))


def test_record_access_twice_adds_two():
    store = _seeded_store()
    before = asyncio.run(store.get_paper("a")).access_count
    asyncio.run(store.record_access("a"))
    after = asyncio.run(store.record_access("a"))
    assert after.access_count == before + 2
    assert asyncio.run(store.record_access("missing")) is None


def test_session_roundtrip_is_a_copy():
    store = InMemoryPaperStore()
    session = ChatSession(session_id="s1")
    asyncio.run(store.save_session(session))
    session.add_message("user", "not saved yet")

    loaded = asyncio.run(store.get_session("s1"))
    assert loaded.messages == []


def test_blob_store_enforces_ceiling():
    blobs = InMemoryBlobStore()
    with pytest.raises(FileTooLargeError):
        asyncio.run(blobs.put("big.txt", FakeUpload(b"x" * 20), "text/plain", max_bytes=10))
    assert len(blobs) == 0

    info = asyncio.run(blobs.put("small.txt", FakeUpload(b"hello"), "text/plain", max_bytes=10))
    assert info.filename.endswith("-small.txt")
    assert asyncio.run(blobs.read(info.file_id)) == b"hello"


def test_blob_stream_and_missing_file():
    blobs = InMemoryBlobStore()
    info = asyncio.run(blobs.put("a.txt", FakeUpload(b"abc"), "text/plain", max_bytes=10))

    async def collect(file_id):
        stream = await prime_stream(blobs.open_stream(file_id))
        return b"".join([chunk async for chunk in stream])

    assert asyncio.run(collect(info.file_id)) == b"abc"
    with pytest.raises(BlobNotFoundError):
        asyncio.run(collect("nope"))

    asyncio.run(blobs.delete(info.file_id))
    assert info.file_id not in blobs
