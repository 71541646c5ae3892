import time

from fastapi import APIRouter, Depends, HTTPException

from desci.core.app_state import AppState, get_state
from desci.core.exceptions import DesciError, public_error_message
from desci.models.schemas import (
    ChatPaper,
    ChatRequest,
    ChatResponse,
    ChatSession,
    SessionMessageResponse,
)
from desci.services.chat_service import answer_chat
from desci.utils.logger import (
    log_error_with_trace,
    log_operation_end,
    log_operation_start,
    log_performance,
    logger,
)

router = APIRouter()


def _chat_papers(papers) -> list[ChatPaper]:
    return [
        ChatPaper(paper_id=p.paper_id, title=p.title, authors=p.authors, fee=p.fee)
        for p in papers
    ]


def _require_message(req: ChatRequest) -> str:
    if not req.message or not req.message.strip():
        raise HTTPException(status_code=400, detail="message is required")
    return req.message.strip()


@router.get("/health")
def health():
    return {"status": "ok", "message": "Chat routes are working"}


@router.post("", response_model=ChatResponse)
async def chat(req: ChatRequest, state: AppState = Depends(get_state)):
    message = _require_message(req)
    start_time = time.time()

    try:
        reply, papers = await answer_chat(state.store, message, limit=state.settings.SEARCH_LIMIT)
    except DesciError as e:
        log_error_with_trace("chat", e, metadata={"message": message[:200]})
        raise HTTPException(status_code=500, detail=public_error_message(e))

    log_performance(
        "chat",
        (time.time() - start_time) * 1000,
        success=True,
        metadata={"message_length": len(message), "papers": len(papers)},
    )
    return ChatResponse(reply=reply, papers=_chat_papers(papers))


@router.post("/sessions", status_code=201, response_model=ChatSession)
async def create_session(state: AppState = Depends(get_state)):
    try:
        return await state.agent.start_session()
    except DesciError as e:
        log_error_with_trace("create_session", e)
        raise HTTPException(status_code=500, detail=public_error_message(e))


@router.get("/sessions/{session_id}", response_model=ChatSession)
async def get_session(session_id: str, state: AppState = Depends(get_state)):
    try:
        session = await state.store.get_session(session_id)
    except DesciError as e:
        log_error_with_trace("get_session", e, {"session_id": session_id})
        raise HTTPException(status_code=500, detail=public_error_message(e))

    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return session


@router.post("/sessions/{session_id}/messages", response_model=SessionMessageResponse)
async def send_session_message(session_id: str, req: ChatRequest, state: AppState = Depends(get_state)):
    message = _require_message(req)
    start_time = time.time()
    log_operation_start("session_message", metadata={"session_id": session_id, "message_preview": message[:100]})

    try:
        session = await state.store.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Chat session not found")
        turn = await state.agent.handle(session, message)
    except DesciError as e:
        log_error_with_trace("session_message", e, {"session_id": session_id})
        raise HTTPException(status_code=500, detail=public_error_message(e))

    log_operation_end(
        "session_message",
        (time.time() - start_time) * 1000,
        metadata={"session_id": session_id, "stage": session.stage.value},
    )
    logger.info(f"Session {session_id} now at stage {session.stage.value}")

    return SessionMessageResponse(
        session_id=session.session_id,
        stage=session.stage,
        reply=turn.reply,
        papers=_chat_papers(turn.papers),
        quote=session.quote,
        payment_status=session.payment_status,
    )
