from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple, Union


class AttachmentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "AttachmentKind":
        mime = (mime_type or "").lower()
        if mime.startswith("image/"):
            return cls.IMAGE
        if mime.startswith("video/"):
            return cls.VIDEO
        return cls.OTHER


@dataclass(frozen=True)
class Attachment:
    """A user-supplied file pending submission.

    The payload is read lazily through ``loader`` so that reading can fail at
    encode time. ``kind`` is fixed when the attachment is created.
    """

    name: str
    mime_type: str
    size: int
    loader: Callable[[], bytes] = field(repr=False, compare=False)
    last_modified: Optional[float] = None
    kind: AttachmentKind = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", AttachmentKind.from_mime_type(self.mime_type))

    @property
    def identity(self) -> Tuple[str, Optional[float], int]:
        return (self.name, self.last_modified, self.size)

    def read(self) -> bytes:
        return self.loader()


@dataclass(frozen=True)
class IdeaInput:
    text: str = ""
    attachments: Tuple[Attachment, ...] = ()

    def is_empty(self) -> bool:
        return not self.text.strip() and not self.attachments


@dataclass(frozen=True)
class ExportOptions:
    header: Optional[str] = None
    footer: Optional[str] = None

    @property
    def header_text(self) -> Optional[str]:
        return self.header if self.header and self.header.strip() else None

    @property
    def footer_text(self) -> Optional[str]:
        return self.footer if self.footer and self.footer.strip() else None


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    ATTACHMENT = "attachment"
    TRANSPORT = "transport"
    MODEL = "model"


@dataclass(frozen=True)
class DocumentText:
    text: str


@dataclass(frozen=True)
class GenerationError:
    kind: ErrorKind
    message: str


GenerationResult = Union[DocumentText, GenerationError]


@dataclass(frozen=True)
class FormView:
    error: Optional[str] = None


@dataclass(frozen=True)
class LoadingView:
    pass


@dataclass(frozen=True)
class ResultView:
    content: str


ViewState = Union[FormView, LoadingView, ResultView]
