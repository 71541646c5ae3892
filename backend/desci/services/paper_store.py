"""Document store for papers and chat sessions.

Two backends share the ``PaperStore`` interface:

- ``MongoPaperStore``: MongoDB through motor, text index over
  title/abstract/keywords, relevance from ``textScore``.
- ``InMemoryPaperStore``: process-local dicts, relevance from query-token
  overlap. Used by tests and ``STORAGE_BACKEND=memory``.
"""

from __future__ import annotations

import re
import time
from typing import Dict, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, TEXT, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from desci.core.exceptions import DuplicatePaperError, StorageError
from desci.models.schemas import ChatSession, Paper, utcnow
from desci.utils.logger import log_db_operation, log_error_with_trace, logger

PAPERS_COLLECTION = "papers"
SESSIONS_COLLECTION = "chats"


class PaperStore(Protocol):
    async def ensure_indexes(self) -> None: ...

    async def insert_paper(self, paper: Paper) -> Paper: ...

    async def get_paper(self, paper_id: str) -> Optional[Paper]: ...

    async def list_papers(self) -> List[Paper]: ...

    async def search_papers(self, query: Optional[str], limit: Optional[int] = None) -> List[Paper]: ...

    async def record_access(self, paper_id: str) -> Optional[Paper]: ...

    async def save_session(self, session: ChatSession) -> ChatSession: ...

    async def get_session(self, session_id: str) -> Optional[ChatSession]: ...


def _tokens(text: str) -> set[str]:
    return set(re.findall(r"\w+", text.lower()))


def _searchable_text(paper: Paper) -> str:
    return " ".join([paper.title, paper.abstract, " ".join(paper.keywords)])


class InMemoryPaperStore:
    def __init__(self):
        self._papers: Dict[str, Paper] = {}
        self._sessions: Dict[str, ChatSession] = {}

    async def ensure_indexes(self) -> None:
        return None

    async def insert_paper(self, paper: Paper) -> Paper:
        if paper.paper_id in self._papers:
            raise DuplicatePaperError(paper.paper_id)
        self._papers[paper.paper_id] = paper.model_copy(deep=True)
        log_db_operation("insert", PAPERS_COLLECTION, record_count=1)
        return paper

    async def get_paper(self, paper_id: str) -> Optional[Paper]:
        paper = self._papers.get(paper_id)
        return paper.model_copy(deep=True) if paper else None

    async def list_papers(self) -> List[Paper]:
        return [p.model_copy(deep=True) for p in self._papers.values()]

    async def search_papers(self, query: Optional[str], limit: Optional[int] = None) -> List[Paper]:
        if not query or not query.strip():
            papers = await self.list_papers()
            return papers[:limit] if limit else papers

        q_tokens = _tokens(query)
        scored = []
        for order, paper in enumerate(self._papers.values()):
            overlap = len(q_tokens & _tokens(_searchable_text(paper)))
            if overlap > 0:
                scored.append((overlap, order, paper))

        scored.sort(key=lambda x: (-x[0], x[1]))
        results = [p.model_copy(deep=True) for _, _, p in scored]
        log_db_operation("search", PAPERS_COLLECTION, record_count=len(results))
        return results[:limit] if limit else results

    async def record_access(self, paper_id: str) -> Optional[Paper]:
        paper = self._papers.get(paper_id)
        if paper is None:
            return None
        paper.access_count += 1
        paper.last_accessed_at = utcnow()
        return paper.model_copy(deep=True)

    async def save_session(self, session: ChatSession) -> ChatSession:
        self._sessions[session.session_id] = session.model_copy(deep=True)
        return session

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None


class MongoPaperStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._papers = db[PAPERS_COLLECTION]
        self._sessions = db[SESSIONS_COLLECTION]

    async def ensure_indexes(self) -> None:
        start = time.time()
        try:
            await self._papers.create_index([("paperId", ASCENDING)], unique=True)
            await self._papers.create_index(
                [("title", TEXT), ("abstract", TEXT), ("keywords", TEXT)],
                name="paper_text_search",
            )
            await self._sessions.create_index([("sessionId", ASCENDING)], unique=True)
        except PyMongoError as e:
            log_error_with_trace("ensure_indexes", e)
            raise StorageError(f"Could not create indexes: {e}") from e
        log_db_operation("ensure_indexes", PAPERS_COLLECTION, duration_ms=(time.time() - start) * 1000)

    async def insert_paper(self, paper: Paper) -> Paper:
        start = time.time()
        try:
            await self._papers.insert_one(paper.to_document())
        except DuplicateKeyError as e:
            raise DuplicatePaperError(paper.paper_id) from e
        except PyMongoError as e:
            log_db_operation("insert", PAPERS_COLLECTION, success=False, error=str(e))
            raise StorageError(str(e)) from e
        log_db_operation("insert", PAPERS_COLLECTION, record_count=1, duration_ms=(time.time() - start) * 1000)
        return paper

    async def get_paper(self, paper_id: str) -> Optional[Paper]:
        try:
            doc = await self._papers.find_one({"paperId": paper_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return Paper.model_validate(doc) if doc else None

    async def list_papers(self) -> List[Paper]:
        return await self.search_papers(None)

    async def search_papers(self, query: Optional[str], limit: Optional[int] = None) -> List[Paper]:
        start = time.time()
        if not query or not query.strip():
            cursor = self._papers.find({}, {"_id": 0})
        else:
            cursor = self._papers.find(
                {"$text": {"$search": query}},
                {"_id": 0, "score": {"$meta": "textScore"}},
            ).sort([("score", {"$meta": "textScore"})])
        if limit:
            cursor = cursor.limit(limit)

        try:
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            log_db_operation("search", PAPERS_COLLECTION, success=False, error=str(e))
            raise StorageError(str(e)) from e

        log_db_operation("search", PAPERS_COLLECTION, record_count=len(docs), duration_ms=(time.time() - start) * 1000)
        return [Paper.model_validate(d) for d in docs]

    async def record_access(self, paper_id: str) -> Optional[Paper]:
        try:
            doc = await self._papers.find_one_and_update(
                {"paperId": paper_id},
                {"$inc": {"accessCount": 1}, "$set": {"lastAccessedAt": utcnow()}},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return Paper.model_validate(doc) if doc else None

    async def save_session(self, session: ChatSession) -> ChatSession:
        try:
            await self._sessions.replace_one(
                {"sessionId": session.session_id}, session.to_document(), upsert=True
            )
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return session

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        try:
            doc = await self._sessions.find_one({"sessionId": session_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return ChatSession.model_validate(doc) if doc else None


async def ping(db: AsyncIOMotorDatabase) -> None:
    """Fail fast when MongoDB is unreachable."""
    try:
        await db.command("ping")
    except PyMongoError as e:
        raise StorageError(f"MongoDB connection error: {e}") from e
    logger.info(f"Connected to MongoDB database '{db.name}'")
