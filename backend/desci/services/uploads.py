from pathlib import PurePath
from typing import List, Optional

from desci.core.exceptions import InvalidFileTypeError

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".tex": "application/x-tex",
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".zip": "application/zip",
}

# Media types browsers and clients commonly send for the same extensions
EXTRA_MEDIA_TYPES = {
    "text/x-markdown",
    "text/x-tex",
    "application/x-latex",
    "text/x-latex",
    "application/csv",
    "application/vnd.ms-excel",
    "application/x-zip-compressed",
}

ALLOWED_MEDIA_TYPES = set(CONTENT_TYPES.values()) | EXTRA_MEDIA_TYPES

INVALID_TYPE_MESSAGE = "Invalid file type. Allowed types: PDF, DOCX, TXT, MD, TEX, CSV, XLSX, ZIP"


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(PurePath(filename).suffix.lower(), "application/octet-stream")


def validate_upload_type(filename: Optional[str], content_type: Optional[str]) -> None:
    """Both the extension and the declared media type must be allowed."""
    ext = PurePath(filename or "").suffix.lower()
    media_type = (content_type or "").split(";")[0].strip().lower()
    if ext not in CONTENT_TYPES or media_type not in ALLOWED_MEDIA_TYPES:
        raise InvalidFileTypeError(INVALID_TYPE_MESSAGE)


def form_list(form, name: str) -> Optional[List[str]]:
    """Read a list field sent as repeated ``name``/``name[]`` entries or one comma-separated value."""
    values = [v for v in form.getlist(name) + form.getlist(f"{name}[]") if isinstance(v, str)]
    if not values:
        return None
    if len(values) == 1:
        return [v.strip() for v in values[0].split(",") if v.strip()]
    return [v.strip() for v in values if v.strip()]
