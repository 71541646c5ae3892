import time
from typing import List, Tuple

from desci.models.schemas import Paper
from desci.services.paper_store import PaperStore
from desci.utils.llm_client import call_llm_async
from desci.utils.logger import log_operation_end, log_operation_start

SYSTEM_PROMPT = (
    "You are a research assistant for a decentralized science paper registry. "
    "Answer the user's question using only the paper metadata provided. "
    "Mention paper titles when you rely on them and note that full text "
    "requires paying the listed access fee."
)


def format_authors(paper: Paper) -> str:
    return ", ".join(paper.authors) or "Unknown"


def _paper_context(papers: List[Paper]) -> str:
    return "\n\n".join(
        f'--- Paper "{p.title}" by {format_authors(p)} (fee: {p.fee:g} tokens) ---\n'
        f"Keywords: {', '.join(p.keywords) or 'none'}\n"
        f"Abstract: {p.abstract[:1000]}"
        for p in papers
    )


def template_reply(message: str, papers: List[Paper]) -> str:
    if not papers:
        return (
            f'I couldn\'t find any papers matching "{message}". '
            "Try different keywords or browse all papers at /api/papers."
        )

    lines = [f"I found {len(papers)} paper(s) related to your question:"]
    for i, p in enumerate(papers, 1):
        lines.append(f'{i}. "{p.title}" by {format_authors(p)} - {p.fee:g} tokens')
    lines.append("Start a research session to get a quote and access the full text.")
    return "\n".join(lines)


async def answer_chat(store: PaperStore, message: str, limit: int = 5) -> Tuple[str, List[Paper]]:
    """Search papers for a free-text message and write a reply about them."""
    start = time.time()
    log_operation_start("answer_chat", metadata={"message_preview": message[:100]})

    papers = await store.search_papers(message, limit=limit)
    fallback = template_reply(message, papers)

    if papers:
        reply = await call_llm_async(
            [
                {"role": "system", "content": f"{SYSTEM_PROMPT}\n\n{_paper_context(papers)}"},
                {"role": "user", "content": message},
            ],
            fallback=fallback,
        )
    else:
        reply = fallback

    log_operation_end(
        "answer_chat",
        (time.time() - start) * 1000,
        metadata={"papers": len(papers), "reply_length": len(reply)},
    )
    return reply, papers
