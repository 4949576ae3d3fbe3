from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} with id '{resource_id}' not found",
        )


class ConflictError(HTTPException):
    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class FileValidationError(HTTPException):
    def __init__(
        self, detail: str, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
    ) -> None:
        super().__init__(status_code=status_code, detail=detail)


class FileTooLargeError(FileValidationError):
    def __init__(self, size: int, max_size: int) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"File size {size} bytes exceeds maximum of {max_size} bytes",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )


class UnsupportedFileTypeError(FileValidationError):
    def __init__(self, content_type: str | None, allowed: set[str] | frozenset[str]) -> None:
        self.content_type = content_type
        super().__init__(
            f"File type '{content_type}' not allowed. Allowed: {', '.join(sorted(allowed))}",
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        )


class EmptyFileError(FileValidationError):
    def __init__(self) -> None:
        super().__init__("Uploaded file is empty")


class ExtractionError(Exception):
    """Raised when text extraction from a file fails."""


class CrmError(Exception):
    """Base class for errors returned by the CRM collaborator.

    ``message`` is safe to persist and show to operators; ``detail`` holds the
    raw response body and is only logged.
    """

    retryable: bool = False

    def __init__(
        self, message: str, *, status_code: int | None = None, detail: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class CrmRetryableError(CrmError):
    """Transient failure: network error, timeout or a 5xx-class response."""

    retryable = True


class CrmFatalError(CrmError):
    """The CRM rejected the payload itself; retrying cannot succeed."""
