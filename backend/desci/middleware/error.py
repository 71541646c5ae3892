import json
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from desci.core.config import settings
from desci.core.exceptions import public_error_message
from desci.utils.logger import logger, log_api_request, log_error_with_trace

MAX_LOGGED_BODY_BYTES = 16 * 1024


async def exception_middleware(request: Request, call_next):
    req_id = str(uuid.uuid4())
    start = time.time()
    request.state.req_id = req_id

    method = request.method
    path = request.url.path
    query_params = dict(request.query_params)
    client_host = request.client.host if request.client else None

    # Static body ceiling, checked before anything reads the body
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.MAX_BODY_BYTES:
        logger.warning(f"Rejected {method} {path}: body of {content_length} bytes exceeds limit")
        log_api_request(req_id, method, path, 413, (time.time() - start) * 1000)
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request body exceeds {settings.MAX_BODY_BYTES} bytes", "request_id": req_id},
            headers={"X-Request-ID": req_id},
        )

    # Chunked bodies carry no length to check against the ceiling
    if not content_length and "chunked" in request.headers.get("transfer-encoding", "").lower():
        logger.warning(f"Rejected {method} {path}: chunked body without Content-Length")
        log_api_request(req_id, method, path, 411, (time.time() - start) * 1000)
        return JSONResponse(
            status_code=411,
            content={"detail": "Content-Length required", "request_id": req_id},
            headers={"X-Request-ID": req_id},
        )

    # Capture small JSON bodies for the request log
    request_body = None
    if (
        method in ("POST", "PUT", "PATCH")
        and request.headers.get("content-type", "").startswith("application/json")
        and content_length
        and content_length.isdigit()
        and int(content_length) <= MAX_LOGGED_BODY_BYTES
    ):
        try:
            body_bytes = await request.body()
            if body_bytes:
                request_body = json.loads(body_bytes.decode())
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Could not parse request body: {e}")

    logger.info(
        f"INCOMING REQUEST: {method} {path}",
        extra={"request_id": req_id, "query_params": query_params, "client": client_host},
    )

    status_code = 500
    error = None

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        error = str(exc)
        log_error_with_trace(
            operation=f"{method} {path}",
            error=exc,
            metadata={
                "request_id": req_id,
                "request_body": request_body,
                "query_params": query_params,
            }
        )
        response = JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": public_error_message(exc),
                "request_id": req_id,
            },
        )
    finally:
        duration_ms = (time.time() - start) * 1000
        log_api_request(
            request_id=req_id,
            method=method,
            path=path,
            status_code=status_code,
            latency_ms=duration_ms,
            request_body=request_body,
            error=error,
            metadata={"query_params": query_params, "client": client_host},
        )
        logger.info(
            f"REQUEST COMPLETED: {method} {path} - {status_code} ({duration_ms:.0f}ms)",
            extra={"request_id": req_id, "duration_ms": duration_ms, "status_code": status_code},
        )

    response.headers["X-Request-ID"] = req_id
    return response
