"""Command-driven research agent run against a persisted chat session.

Stages move idle -> papers-selected -> quoted -> paid. Commands:

    /search <query>   select papers for a query
    /quote            price the selected papers
    /pay              settle the quote, then answer from the paper contents
    /help             list commands
    anything else     treated as a research question (search + quote)
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from desci.core.exceptions import PaymentError, StorageError
from desci.models.schemas import ChatSession, Paper, PaymentStatus
from desci.services.blob_store import BlobStore
from desci.services.chat_service import format_authors
from desci.services.paper_store import PaperStore
from desci.services.payments import PaidAccessRegistry, PaymentProcessor
from desci.services.text_extractor import CONTENT_NOT_AVAILABLE, extract_text
from desci.utils.llm_client import call_llm_async
from desci.utils.logger import log_error_with_trace, log_performance, logger

EXCERPT_CHARS = 2000

HELP_TEXT = "\n".join([
    "Commands:",
    "  /search [query] - Search for papers on a topic",
    "  /quote - Get a quote for accessing the papers needed to answer your last query",
    "  /pay - Pay for access to the papers",
    "  /help - Show this help",
])

RESEARCH_PROMPT = (
    "You are a research assistant analyzing scientific papers. "
    "Use information from the provided papers to answer the user's query. "
    "When citing information, specify which paper it's from. "
    "Here are excerpts from relevant papers:\n\n{context}"
)


@dataclass
class AgentTurn:
    reply: str
    papers: List[Paper] = field(default_factory=list)


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _excerpt_context(papers: List[Paper], contents: List[str]) -> str:
    return "\n\n".join(
        f'--- Paper: "{p.title}" by {format_authors(p)} ---\n{content[:EXCERPT_CHARS]}...\n'
        for p, content in zip(papers, contents)
    )


def _excerpt_fallback(papers: List[Paper], contents: List[str]) -> str:
    lines = ["The language model is unavailable. Excerpts from the papers you paid for:"]
    for p, content in zip(papers, contents):
        lines.append(f'\n"{p.title}":\n{content[:500]}')
    return "\n".join(lines)


class ResearchAgent:
    def __init__(
        self,
        store: PaperStore,
        blobs: BlobStore,
        payments: PaymentProcessor,
        paid_registry: PaidAccessRegistry,
        search_limit: int = 5,
        platform_fee_percent: float = 5.0,
    ):
        self._store = store
        self._blobs = blobs
        self._payments = payments
        self._paid = paid_registry
        self._search_limit = search_limit
        self._fee_percent = platform_fee_percent

    async def start_session(self) -> ChatSession:
        session = ChatSession(session_id=new_session_id())
        await self._store.save_session(session)
        logger.info(f"Research session created: {session.session_id}")
        return session

    async def handle(self, session: ChatSession, text: str) -> AgentTurn:
        """Run one command or question and persist the session."""
        text = (text or "").strip()
        command = text.lower()

        if not text:
            turn = AgentTurn("Please ask a research question or use a command. Type /help for options.")
        elif command == "/help":
            turn = AgentTurn(HELP_TEXT)
        elif command.startswith("/search"):
            turn = await self._search(session, text[len("/search"):].strip())
        elif command == "/quote":
            turn = self._quote(session)
        elif command == "/pay":
            turn = await self._pay(session)
        else:
            turn = await self._question(session, text)

        await self._store.save_session(session)
        return turn

    async def _select(self, session: ChatSession, query: str) -> List[Paper]:
        papers = await self._store.search_papers(query, limit=self._search_limit)
        session.set_related_papers(papers)
        return papers

    async def _search(self, session: ChatSession, query: str) -> AgentTurn:
        if not query:
            return AgentTurn("Please provide a search query.")

        papers = await self._select(session, query)
        session.add_message("user", query)
        session.add_message("system", f"Found {len(papers)} relevant papers.")

        if not papers:
            return AgentTurn(f'No papers found for "{query}".')

        lines = ["Relevant papers:"]
        for i, p in enumerate(papers, 1):
            lines.append(f'{i}. "{p.title}" by {format_authors(p)}')
            lines.append(f"   Fee: {p.fee:g} tokens")
            lines.append(f"   Abstract: {p.abstract[:100]}...")
        return AgentTurn("\n".join(lines), papers)

    def _quote(self, session: ChatSession) -> AgentTurn:
        if not session.related_papers:
            return AgentTurn("No papers selected yet. Please search for papers first.")

        quote = session.calculate_quote(self._fee_percent)
        session.add_message("system", f"Quote generated: {quote.total_cost:g} tokens total.")

        lines = [
            "Quote for accessing research papers:",
            f"Papers cost: {quote.papers_cost:g} tokens",
            f"Platform fee: {quote.platform_fee:g} tokens",
            f"Total cost: {quote.total_cost:g} tokens",
            "",
            "Papers included:",
        ]
        lines += [f'{i}. "{p.title}" - {p.fee:g} tokens' for i, p in enumerate(quote.papers, 1)]
        return AgentTurn("\n".join(lines))

    async def _question(self, session: ChatSession, question: str) -> AgentTurn:
        session.add_message("user", question)
        papers = await self._select(session, question)

        if not papers:
            return AgentTurn("I couldn't find any papers that could help answer your question.")

        quote = session.calculate_quote(self._fee_percent)
        lines = [f"I found {len(papers)} papers that could help answer your question.", "Here are the most relevant papers:"]
        lines += [f'{i}. "{p.title}" by {format_authors(p)}' for i, p in enumerate(papers[:3], 1)]
        lines.append(f"\nTo access these papers, you'll need to pay {quote.total_cost:g} tokens.")
        lines.append("Use /quote to see details or /pay to purchase access.")
        return AgentTurn("\n".join(lines), papers)

    async def _pay(self, session: ChatSession) -> AgentTurn:
        if session.quote is None:
            return AgentTurn("No quote available. Please get a quote first.")
        if session.payment_status == PaymentStatus.PAID:
            return AgentTurn("You've already paid for these papers.")

        try:
            session.payment = await self._payments.settle(session)
        except PaymentError as e:
            session.payment_status = PaymentStatus.FAILED
            session.add_message("system", f"Payment failed: {e}")
            return AgentTurn(f"Payment failed: {e}. Please try again.")

        session.payment_status = PaymentStatus.PAID
        self._paid.mark_paid(p.paper_id for p in session.related_papers)
        session.add_message("system", f"Payment processed ({session.payment.mode}).")
        # Paid state is saved before any content is read
        await self._store.save_session(session)

        papers, contents = await self._gather_contents(session)
        question = session.last_user_question() or "Summarize the papers"

        start = time.time()
        answer = await call_llm_async(
            [
                {"role": "system", "content": RESEARCH_PROMPT.format(context=_excerpt_context(papers, contents))},
                {"role": "user", "content": question},
            ],
            max_tokens=800,
            fallback=_excerpt_fallback(papers, contents),
        )
        log_performance(
            "generate_research_response",
            (time.time() - start) * 1000,
            success=True,
            metadata={"session_id": session.session_id, "papers": len(papers)},
        )

        session.add_message("assistant", answer)
        header = "Payment processed successfully!"
        if session.payment.note:
            header += f" ({session.payment.note})"
        return AgentTurn(f"{header}\n\n=== RESEARCH FINDINGS ===\n{answer}", papers)

    async def _gather_contents(self, session: ChatSession) -> tuple[List[Paper], List[str]]:
        papers = await asyncio.gather(*(self._accessed_paper(p.paper_id) for p in session.related_papers))
        found = [p for p in papers if p is not None]
        contents = await asyncio.gather(*(self._paper_text(p) for p in found))
        return found, list(contents)

    async def _accessed_paper(self, paper_id: str) -> Optional[Paper]:
        try:
            return await self._store.record_access(paper_id)
        except StorageError as e:
            log_error_with_trace("record_access", e, {"paper_id": paper_id})
        try:
            return await self._store.get_paper(paper_id)
        except StorageError as e:
            log_error_with_trace("get_paper", e, {"paper_id": paper_id})
            return None

    async def _paper_text(self, paper: Paper) -> str:
        if not paper.file_id:
            return CONTENT_NOT_AVAILABLE
        try:
            data = await self._blobs.read(paper.file_id)
            text = await asyncio.to_thread(extract_text, data, paper.mimetype, paper.original_name)
        except StorageError as e:
            log_error_with_trace("paper_text", e, {"paper_id": paper.paper_id})
            return "Error retrieving content"
        return text or CONTENT_NOT_AVAILABLE
