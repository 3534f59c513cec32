"""Attachment ingestion and encoding."""

import asyncio
import base64
import logging
import mimetypes
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from prdgenie.state import Attachment, AttachmentKind

# Logger
logger = logging.getLogger("prdgenie.file_handler")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

# Constants
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_MIME_TYPE = "application/octet-stream"

Identity = Tuple[str, Optional[float], int]


class AttachmentReadError(Exception):
    """Raised when an attachment payload cannot be read for encoding."""

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Could not read attachment '{name}': {cause}")
        self.name = name
        self.cause = cause


def validate_file_size(size: int, name: str = "") -> bool:
    """Validate that file size is within limits.

    Raises:
        ValueError: If file size exceeds limit
    """
    if size > MAX_FILE_SIZE:
        label = f"{name} " if name else ""
        raise ValueError(f"File {label}is larger than 10MB ({size / 1024 / 1024:.1f}MB)")
    return True


def _guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


def attachment_from_upload(file, last_modified: Optional[float] = None) -> Attachment:
    """Build an attachment from a Streamlit UploadedFile.

    Raises:
        ValueError: If the file is larger than MAX_FILE_SIZE
    """
    validate_file_size(file.size, file.name)
    mime_type = file.type or _guess_mime_type(file.name)
    return Attachment(
        name=file.name,
        mime_type=mime_type,
        size=file.size,
        loader=file.getvalue,
        last_modified=last_modified,
    )


def attachment_from_path(path: Union[str, Path], mime_type: Optional[str] = None) -> Attachment:
    """Build an attachment backed by a file on disk.

    The file is only read when the attachment is encoded.
    """
    path = Path(path)
    stat = path.stat()
    validate_file_size(stat.st_size, path.name)
    return Attachment(
        name=path.name,
        mime_type=mime_type or _guess_mime_type(path.name),
        size=stat.st_size,
        loader=path.read_bytes,
        last_modified=stat.st_mtime,
    )


def attachment_from_bytes(
    name: str,
    data: bytes,
    mime_type: Optional[str] = None,
    last_modified: Optional[float] = None,
) -> Attachment:
    payload = bytes(data)
    return Attachment(
        name=name,
        mime_type=mime_type or _guess_mime_type(name),
        size=len(payload),
        loader=lambda: payload,
        last_modified=last_modified,
    )


async def encode_attachment(attachment: Attachment) -> str:
    """Return the attachment payload as plain base64 (no ``data:`` URL prefix).

    Raises:
        AttachmentReadError: If the payload cannot be read
    """
    try:
        payload = await asyncio.to_thread(attachment.read)
    except Exception as e:
        logger.error(f"Failed to read attachment {attachment.name}: {e}")
        raise AttachmentReadError(attachment.name, e) from e
    return base64.b64encode(payload).decode("ascii")


class PendingAttachments:
    """Ordered set of attachments waiting for submission.

    Attachments are keyed by ``(name, last_modified, size)``; adding one whose
    identity is already pending is a no-op. Progress for an attachment stays
    at 0 until its encode step reports completion.
    """

    def __init__(self, attachments: Iterable[Attachment] = ()):
        self._items: Dict[Identity, Attachment] = {}
        self._progress: Dict[Identity, int] = {}
        self.add(attachments)

    def add(self, attachments: Iterable[Attachment]) -> List[Attachment]:
        added: List[Attachment] = []
        for attachment in attachments:
            key = attachment.identity
            if key in self._items:
                continue
            self._items[key] = attachment
            self._progress[key] = 0
            added.append(attachment)
        return added

    def remove(self, identity: Identity) -> None:
        self._items.pop(identity, None)
        self._progress.pop(identity, None)

    def clear(self) -> None:
        self._items.clear()
        self._progress.clear()

    def mark_encoded(self, attachment: Attachment) -> None:
        if attachment.identity in self._progress:
            self._progress[attachment.identity] = 100

    def progress(self, attachment: Attachment) -> int:
        return self._progress.get(attachment.identity, 0)

    def images(self) -> List[Attachment]:
        return [a for a in self if a.kind is AttachmentKind.IMAGE]

    def as_tuple(self) -> Tuple[Attachment, ...]:
        return tuple(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Attachment]:
        return iter(list(self._items.values()))

    def __contains__(self, attachment: object) -> bool:
        return isinstance(attachment, Attachment) and attachment.identity in self._items


def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    """Human-readable size, e.g. ``1536 -> '1.5 KB'``."""
    if num_bytes <= 0:
        return "0 Bytes"
    k = 1024
    digits = max(decimals, 0)
    sizes = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while i < len(sizes) - 1 and num_bytes >= k ** (i + 1):
        i += 1
    value = f"{num_bytes / k ** i:.{digits}f}"
    if "." in value:
        value = value.rstrip("0").rstrip(".")
    return f"{value} {sizes[i]}"


def kind_icon(attachment: Attachment) -> str:
    icons: Dict[AttachmentKind, str] = {
        AttachmentKind.IMAGE: "🖼️",
        AttachmentKind.VIDEO: "🎞️",
        AttachmentKind.OTHER: "📄",
    }
    return icons[attachment.kind]
