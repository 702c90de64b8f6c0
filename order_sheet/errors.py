"""Error taxonomy for the conversion pipeline.

Every error carries a stable ``code`` the caller can branch on, and a list of
``causes`` holding the messages of any fallback attempts that failed before it.
Only ``RowConversionFailed`` is recovered locally (by the mapping engine); the
rest abort the request.
"""

from __future__ import annotations


class ConversionError(Exception):
    code = "conversion-error"

    def __init__(self, message: str, *, causes: list[str] | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.causes = list(causes or [])
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.causes:
            payload["causes"] = list(self.causes)
        return payload


class UnclassifiableFormat(ConversionError):
    code = "unsupported-format"


class LegacyFileTooLarge(ConversionError):
    code = "large-xls-constrained"


class FileTooLarge(ConversionError):
    code = "file-too-large"


class WorkbookUnreadable(ConversionError):
    code = "workbook-unreadable"


class HeaderNotFound(ConversionError):
    code = "header-not-found"


class TemplateInvalid(ConversionError):
    code = "template-invalid"


class TemplateNotFound(ConversionError):
    code = "template-not-found"


class RowConversionFailed(ConversionError):
    code = "row-conversion-failed"

    def __init__(self, row_index: int, message: str) -> None:
        super().__init__(message)
        self.row_index = row_index


class BlobStoreFailure(ConversionError):
    code = "blob-store-failure"


class AttemptTimedOut(Exception):
    """Raised by ``racing.race`` when the timer wins."""

    def __init__(self, label: str, timeout: float) -> None:
        super().__init__(f"{label} timed out after {timeout:g}s")
        self.label = label
        self.timeout = timeout
