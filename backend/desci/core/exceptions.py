"""Core exceptions for the DeSci platform"""

from desci.core.config import settings


class DesciError(Exception):
    """Base exception for all platform errors"""
    pass


class ConfigurationError(DesciError):
    """Missing or inconsistent configuration"""
    pass


class StorageError(DesciError):
    """Document or blob store failure"""
    pass


class DuplicatePaperError(StorageError):
    """A paper with the same paperId already exists"""

    def __init__(self, paper_id: str):
        super().__init__(f"Paper with id '{paper_id}' already exists")
        self.paper_id = paper_id


class BlobNotFoundError(StorageError):
    """No stored file for the given id"""
    pass


class FileTooLargeError(DesciError):
    """Uploaded file exceeds the configured ceiling"""

    def __init__(self, limit_bytes: int):
        super().__init__(f"File exceeds the maximum size of {limit_bytes} bytes")
        self.limit_bytes = limit_bytes


class InvalidFileTypeError(DesciError):
    """Uploaded file type is not accepted"""
    pass


class LedgerError(DesciError):
    """Ledger SDK call failed; message carries the SDK error unchanged"""
    pass


class PaymentError(DesciError):
    """Payment for a quote could not be settled"""
    pass


def public_error_message(exc: Exception, fallback: str = "Server error occurred") -> str:
    """Error text safe to return to clients.

    Upstream messages are shown verbatim in development and redacted otherwise.
    """
    if settings.is_development:
        return str(exc) or fallback
    return fallback
