"""
uploads/validator.py -- Validate an incoming file, then store it under a unique name.

Checks run in a fixed order and stop at the first failure:
  1. the upload itself reported an error (no file, empty filename, ...)
  2. declared MIME type not in the allow-list
  3. declared size above max_size
Nothing touches the target directory until all three pass.

Stored name: <32 hex chars from uuid4>_<sanitized original name>. The uuid
prefix keeps names unique across concurrent uploads of the same file;
sanitization (core.validation.sanitize_filename) keeps path separators and
"../" out of the final path. The file is opened with mode "xb" so an
existing file is never overwritten.

The declared type is whatever the client sent in the multipart part header.
It is a policy filter, not proof of content.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from core.validation import sanitize_filename

logger = logging.getLogger("nemesis.uploads")

_DIR_MODE = 0o755
_FALLBACK_NAME = "upload"


class UploadFailure(str, Enum):
    UPLOAD_ERROR = "upload_error"
    TYPE_REJECTED = "type_rejected"
    SIZE_EXCEEDED = "size_exceeded"
    STORAGE_FAILURE = "storage_failure"


_FAILURE_MESSAGES: dict[UploadFailure, str] = {
    UploadFailure.UPLOAD_ERROR: "File upload failed.",
    UploadFailure.TYPE_REJECTED: "Invalid file type.",
    UploadFailure.SIZE_EXCEEDED: "File too large.",
    UploadFailure.STORAGE_FAILURE: "Failed to save file.",
}


@dataclass
class IncomingFile:
    """What the client sent, before any validation.

    size is the declared size in bytes. stream is read from its current
    position when the file is stored. error is set when the transport layer
    already knows the upload is unusable.
    """

    filename: str
    content_type: str
    size: int
    stream: BinaryIO | None = None
    error: str | None = None

    @classmethod
    def from_upload(cls, upload) -> IncomingFile:
        """Adapt a Starlette/FastAPI UploadFile.

        UploadFile.size is None when the server could not determine it; the
        spooled temp file is measured instead.
        """
        if upload is None or not getattr(upload, "filename", None):
            return cls(filename="", content_type="", size=0, error="No file was uploaded.")
        size = upload.size
        if size is None:
            upload.file.seek(0, 2)
            size = upload.file.tell()
            upload.file.seek(0)
        return cls(
            filename=upload.filename,
            content_type=upload.content_type or "",
            size=size,
            stream=upload.file,
        )


@dataclass
class UploadedAsset:
    original_name: str
    content_type: str
    size: int
    stored_name: str
    path: Path

    def to_dict(self) -> dict:
        return {
            "original_name": self.original_name,
            "content_type": self.content_type,
            "size": self.size,
            "stored_name": self.stored_name,
            "path": str(self.path),
        }


@dataclass
class UploadResult:
    asset: UploadedAsset | None = None
    failure: UploadFailure | None = None

    @property
    def ok(self) -> bool:
        return self.asset is not None

    @property
    def message(self) -> str:
        if self.failure is None:
            return "File uploaded successfully."
        return _FAILURE_MESSAGES[self.failure]


def generate_unique_filename(original_name: str) -> str:
    safe = sanitize_filename(Path(original_name or "").name) or _FALLBACK_NAME
    return f"{uuid.uuid4().hex}_{safe}"


def validate_upload(incoming: IncomingFile, allowed_types: Iterable[str], max_size: int) -> UploadFailure | None:
    """Return the first failing check, or None if the file may be stored.

    An empty allow-list admits nothing.
    """
    if incoming.error or incoming.stream is None or not incoming.filename:
        return UploadFailure.UPLOAD_ERROR
    if incoming.content_type not in set(allowed_types):
        return UploadFailure.TYPE_REJECTED
    if incoming.size > max_size:
        return UploadFailure.SIZE_EXCEEDED
    return None


def validate_and_store(
    incoming: IncomingFile,
    allowed_types: Iterable[str],
    max_size: int,
    directory: Path | str,
) -> UploadResult:
    """Validate incoming and, if accepted, copy it into directory.

    Returns an UploadResult carrying either the stored UploadedAsset or the
    UploadFailure reason. Filesystem errors are logged and reported as
    STORAGE_FAILURE; a partially written file is removed.
    """
    failure = validate_upload(incoming, allowed_types, max_size)
    if failure is not None:
        logger.info("Rejected upload %r: %s", incoming.filename[:100], failure.value)
        return UploadResult(failure=failure)

    target_dir = Path(directory)
    stored_name = generate_unique_filename(incoming.filename)
    target = target_dir / stored_name
    created = False
    try:
        target_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        with open(target, "xb") as out:
            created = True
            shutil.copyfileobj(incoming.stream, out)
    except OSError:
        logger.exception("Could not store upload in %s", target_dir)
        if created:
            target.unlink(missing_ok=True)
        return UploadResult(failure=UploadFailure.STORAGE_FAILURE)

    logger.info("Stored upload %s (%d bytes)", stored_name, incoming.size)
    return UploadResult(
        asset=UploadedAsset(
            original_name=incoming.filename,
            content_type=incoming.content_type,
            size=incoming.size,
            stored_name=stored_name,
            path=target,
        )
    )
