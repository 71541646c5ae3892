import math
import time
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.datastructures import UploadFile

from desci.core.app_state import AppState, get_state
from desci.core.exceptions import (
    BlobNotFoundError,
    DesciError,
    DuplicatePaperError,
    FileTooLargeError,
    InvalidFileTypeError,
    public_error_message,
)
from desci.models.schemas import Paper, PaperCreatedResponse, PaperCreateRequest, PaperSummary
from desci.services.blob_store import prime_stream
from desci.services.uploads import form_list, validate_upload_type
from desci.utils.logger import (
    log_error_with_trace,
    log_operation_end,
    log_operation_start,
    log_performance,
    logger,
)

router = APIRouter()

TOPIC_MEMO_MAX = 100


def _upstream_error(operation: str, exc: Exception, metadata: Optional[dict] = None) -> HTTPException:
    log_error_with_trace(operation, exc, metadata)
    return HTTPException(status_code=500, detail=public_error_message(exc))


def _parse_fee(value, default: float) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        fee = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="fee must be a number")
    if not math.isfinite(fee):
        raise HTTPException(status_code=400, detail="fee must be a finite number")
    if fee < 0:
        raise HTTPException(status_code=400, detail="fee must not be negative")
    return fee


def _validate_metadata(req: PaperCreateRequest, default_fee: float) -> float:
    missing = req.missing_fields()
    if missing:
        logger.warning(f"Paper request missing fields: {missing}")
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    return _parse_fee(req.fee, default_fee)


@router.get("/health")
def health():
    return {"status": "ok", "message": "Paper routes are working"}


@router.get("", response_model=List[PaperSummary])
async def list_papers(q: Optional[str] = None, state: AppState = Depends(get_state)):
    try:
        papers = await state.store.search_papers(q)
    except DesciError as e:
        raise _upstream_error("list_papers", e, {"query": q})
    return [PaperSummary.from_paper(p) for p in papers]


@router.get("/{paper_id}", response_model=Paper)
async def get_paper(paper_id: str, state: AppState = Depends(get_state)):
    try:
        paper = await state.store.record_access(paper_id)
    except DesciError as e:
        raise _upstream_error("get_paper", e, {"paper_id": paper_id})

    if paper is None:
        raise HTTPException(status_code=404, detail="Paper not found")
    return paper


@router.get("/{paper_id}/content")
async def get_paper_content(paper_id: str, state: AppState = Depends(get_state)):
    try:
        paper = await state.store.get_paper(paper_id)
    except DesciError as e:
        raise _upstream_error("get_paper_content", e, {"paper_id": paper_id})

    if paper is None:
        raise HTTPException(status_code=404, detail="Paper not found")
    if not paper.file_id:
        raise HTTPException(status_code=404, detail="Paper has no uploaded file")

    try:
        stream = await prime_stream(state.blobs.open_stream(paper.file_id))
        await state.store.record_access(paper_id)
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="Paper file not found")
    except DesciError as e:
        raise _upstream_error("get_paper_content", e, {"paper_id": paper_id})

    name = paper.original_name or paper.filename or paper_id
    return StreamingResponse(
        stream,
        media_type=paper.mimetype or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(name)}"},
    )


@router.post("", status_code=201, response_model=PaperCreatedResponse)
async def create_paper(req: PaperCreateRequest, state: AppState = Depends(get_state)):
    fee = _validate_metadata(req, state.settings.DEFAULT_FEE)

    paper = Paper(
        paper_id=req.paper_id.strip(),
        title=req.title,
        authors=req.authors,
        abstract=req.abstract,
        keywords=req.keywords or [],
        publisher_id=req.publisher_id,
        fee=fee,
        # Metadata-only papers share the registry topic
        content_topic_id=state.main_topic_id,
    )

    try:
        await state.store.insert_paper(paper)
    except DuplicatePaperError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DesciError as e:
        raise _upstream_error("create_paper", e, {"paper_id": paper.paper_id})

    logger.info(f"Paper metadata created: {paper.paper_id}")
    return PaperCreatedResponse(message="Paper metadata created successfully", paper=paper)


@router.post("/upload", status_code=201, response_model=PaperCreatedResponse)
async def upload_paper(request: Request, state: AppState = Depends(get_state)):
    # Closing the form releases spooled upload files
    async with request.form() as form:
        return await _store_upload(form, state)


async def _store_upload(form, state: AppState) -> PaperCreatedResponse:
    overall_start = time.time()
    max_bytes = state.settings.MAX_UPLOAD_BYTES

    file = form.get("file")
    if not isinstance(file, UploadFile):
        raise HTTPException(status_code=400, detail="No file uploaded")

    log_operation_start(
        "upload_paper",
        metadata={"filename": file.filename, "content_type": file.content_type, "paper_id": form.get("paperId")},
    )

    try:
        validate_upload_type(file.filename, file.content_type)
    except InvalidFileTypeError as e:
        logger.warning(f"Invalid file type: {file.content_type} for file {file.filename}")
        raise HTTPException(status_code=400, detail=str(e))

    req = PaperCreateRequest(
        paper_id=form.get("paperId"),
        title=form.get("title"),
        authors=form_list(form, "authors"),
        abstract=form.get("abstract"),
        keywords=form_list(form, "keywords"),
        publisher_id=form.get("publisherId"),
        fee=form.get("fee"),
    )
    fee = _validate_metadata(req, state.settings.DEFAULT_FEE)
    paper_id = req.paper_id.strip()

    if state.ledger is None or not state.main_topic_id:
        raise HTTPException(status_code=500, detail="Server not properly initialized with ledger client")

    if file.size is not None and file.size > max_bytes:
        raise HTTPException(status_code=413, detail=str(FileTooLargeError(max_bytes)))

    try:
        if await state.store.get_paper(paper_id) is not None:
            raise HTTPException(status_code=409, detail=str(DuplicatePaperError(paper_id)))
        stored = await state.blobs.put(file.filename, file, file.content_type, max_bytes)
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except DesciError as e:
        raise _upstream_error("store_paper_file", e, {"paper_id": paper_id})

    try:
        step_start = time.time()
        memo = f"DeSci Paper Content: {req.title}"[:TOPIC_MEMO_MAX]
        content_topic_id = await state.ledger.create_topic(memo)
        log_performance(
            "create_content_topic",
            (time.time() - step_start) * 1000,
            success=True,
            metadata={"paper_id": paper_id, "topic_id": content_topic_id},
        )

        paper = Paper(
            paper_id=paper_id,
            title=req.title,
            authors=req.authors,
            abstract=req.abstract,
            keywords=req.keywords or [],
            publisher_id=req.publisher_id,
            fee=fee,
            content_topic_id=content_topic_id,
            file_id=stored.file_id,
            filename=stored.filename,
            original_name=stored.original_name,
            mimetype=stored.content_type,
            size=stored.size,
            upload_date=stored.upload_date,
        )
        await state.store.insert_paper(paper)
    except DuplicatePaperError as e:
        await state.blobs.delete(stored.file_id)
        raise HTTPException(status_code=409, detail=str(e))
    except DesciError as e:
        await state.blobs.delete(stored.file_id)
        raise _upstream_error("upload_paper", e, {"paper_id": paper_id})

    overall_duration = (time.time() - overall_start) * 1000
    log_operation_end(
        "upload_paper",
        overall_duration,
        metadata={"paper_id": paper_id, "file_size_bytes": stored.size, "topic_id": content_topic_id},
    )
    return PaperCreatedResponse(message="Paper uploaded successfully", paper=paper)
