import time
from io import BytesIO
from pathlib import PurePath
from typing import Optional

import fitz
import pdfplumber
import pytesseract
from PIL import Image

from desci.utils.logger import (
    log_operation_end,
    log_operation_start,
    log_performance,
    logger,
)

TEXT_EXTENSIONS = {".txt", ".md", ".tex", ".csv"}
TEXT_MEDIA_PREFIXES = ("text/",)

CONTENT_NOT_AVAILABLE = "Content not available"


def _extract_with_pdfplumber(data: bytes) -> str:
    """Extract text using pdfplumber page-by-page."""
    start_time = time.time()
    pages = []
    with pdfplumber.open(BytesIO(data)) as pdf:
        page_count = len(pdf.pages)
        for page in pdf.pages:
            pages.append(page.extract_text() or "")

    result = "\n".join(pages)
    log_performance(
        "_extract_with_pdfplumber",
        (time.time() - start_time) * 1000,
        success=True,
        metadata={"pages": page_count, "text_length": len(result)},
    )
    return result


def _extract_with_pymupdf(data: bytes) -> str:
    """Extract text using PyMuPDF."""
    start_time = time.time()
    with fitz.open(stream=data, filetype="pdf") as doc:
        page_count = len(doc)
        texts = [page.get_text("text") or "" for page in doc]

    result = "\n".join(texts)
    log_performance(
        "_extract_with_pymupdf",
        (time.time() - start_time) * 1000,
        success=True,
        metadata={"pages": page_count, "text_length": len(result)},
    )
    return result


def _ocr_fallback(data: bytes) -> str:
    """Render pages to images and OCR them."""
    start_time = time.time()
    ocr_texts = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        page_count = len(doc)
        for page in doc:
            pix = page.get_pixmap(dpi=150)
            image = Image.open(BytesIO(pix.tobytes("png")))
            ocr_texts.append(pytesseract.image_to_string(image))

    result = "\n".join(ocr_texts).strip()
    log_performance(
        "_ocr_fallback",
        (time.time() - start_time) * 1000,
        success=True,
        metadata={"pages": page_count, "text_length": len(result)},
    )
    return result


def extract_pdf_text(data: bytes) -> str:
    """pdfplumber, then PyMuPDF, then OCR when neither finds any text."""
    try:
        text = _extract_with_pdfplumber(data)
    except Exception as e:
        logger.warning(f"pdfplumber extraction failed: {e}")
        text = ""

    if not text.strip():
        try:
            text = _extract_with_pymupdf(data)
        except Exception as e:
            logger.warning(f"PyMuPDF extraction failed: {e}")
            text = ""

    if not text.strip():
        logger.warning("No text extracted with standard methods, trying OCR")
        try:
            text = _ocr_fallback(data)
        except Exception as e:
            logger.warning(f"OCR fallback failed: {e}")
            text = ""

    return text


def extract_text(data: bytes, mimetype: Optional[str] = None, filename: Optional[str] = None) -> Optional[str]:
    """Best-effort plain text for a stored paper file.

    Returns None for formats without a text rendition (docx, xlsx, zip).
    """
    start = time.time()
    ext = PurePath(filename).suffix.lower() if filename else ""
    mimetype = (mimetype or "").lower()
    log_operation_start("extract_text", metadata={"mimetype": mimetype, "ext": ext, "bytes": len(data)})

    if mimetype == "application/pdf" or ext == ".pdf":
        text = extract_pdf_text(data)
    elif ext in TEXT_EXTENSIONS or mimetype.startswith(TEXT_MEDIA_PREFIXES):
        text = data.decode("utf-8", errors="replace")
    else:
        logger.info(f"No text extractor for {mimetype or ext or 'unknown type'}")
        text = None

    log_operation_end(
        "extract_text",
        (time.time() - start) * 1000,
        metadata={"text_length": len(text) if text else 0},
    )
    return text
