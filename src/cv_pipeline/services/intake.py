import re
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath

from cv_pipeline.core.config import PipelineConfig
from cv_pipeline.core.exceptions import EmptyFileError, FileTooLargeError, UnsupportedFileTypeError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]")
_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
MAX_SANITIZED_NAME_LENGTH = 200


@dataclass(frozen=True)
class IntakeDecision:
    original_filename: str
    content_type: str
    size: int
    stored_filename: str


def sanitize_filename(original_filename: str) -> str:
    # Drop any client-supplied directory part, whichever separator it uses
    name = PureWindowsPath(PurePosixPath(original_filename).name).name
    sanitized = _UNSAFE_CHARS.sub("_", name)[-MAX_SANITIZED_NAME_LENGTH:]
    return sanitized or "upload"


def generate_stored_filename(
    original_filename: str,
    *,
    now: float | None = None,
    token: str | None = None,
) -> str:
    """Build a collision-resistant storage name.

    Format is ``{random}_{epoch_millis}_{sanitized_original}``. Two uploads
    would need the same millisecond and the same 8-character random token to
    collide, which is not checked for.
    """
    millis = int((time.time() if now is None else now) * 1000)
    if token is None:
        token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(8))
    return f"{token}_{millis}_{sanitize_filename(original_filename)}"


def validate_upload(
    *,
    size: int,
    content_type: str | None,
    original_filename: str | None,
    config: PipelineConfig,
) -> IntakeDecision:
    """Accept or reject an upload before anything is persisted.

    The type check runs first so a disallowed MIME type is always reported as
    such, whatever the file size.
    """
    if content_type not in config.allowed_mime_types:
        raise UnsupportedFileTypeError(content_type, config.allowed_mime_types)
    if size > config.max_upload_size_bytes:
        raise FileTooLargeError(size, config.max_upload_size_bytes)
    if size == 0:
        raise EmptyFileError()

    original = original_filename or "upload"
    return IntakeDecision(
        original_filename=original,
        content_type=content_type,
        size=size,
        stored_filename=generate_stored_filename(original),
    )
