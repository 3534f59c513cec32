from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from prdgenie.config import DEFAULT_MODEL_NAME, Settings
from prdgenie.file_handler import AttachmentReadError, encode_attachment
from prdgenie.prompts import format_idea_text, get_prd_prompt
from prdgenie.state import (
    Attachment,
    AttachmentKind,
    DocumentText,
    ErrorKind,
    GenerationError,
    GenerationResult,
)

# Logger (to terminal)
logger = logging.getLogger("prdgenie.llm")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

MISSING_API_KEY_MESSAGE = (
    "Missing API key. Please set GEMINI_API_KEY (or GOOGLE_API_KEY / API_KEY) "
    "in your environment or .env file."
)
COMMUNICATION_ERROR_PREFIX = "Failed to communicate with the AI model"

OnEncoded = Callable[[Attachment], None]
ClientFactory = Callable[[], Any]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineImagePart:
    mime_type: str
    data: str  # base64, no data-URL prefix


ContentPart = Union[TextPart, InlineImagePart]


@dataclass(frozen=True)
class GenerationRequest:
    system_instruction: str
    parts: Tuple[ContentPart, ...]

    @property
    def text_part(self) -> TextPart:
        return self.parts[0]  # type: ignore[return-value]

    @property
    def image_parts(self) -> List[InlineImagePart]:
        return [p for p in self.parts if isinstance(p, InlineImagePart)]

    def to_contents(self) -> types.Content:
        """Convert the content parts into a Gemini ``Content`` object.

        The system instruction is not part of the contents; it is passed via
        ``GenerateContentConfig``.
        """
        parts: List[types.Part] = []
        for part in self.parts:
            if isinstance(part, TextPart):
                parts.append(types.Part.from_text(text=part.text))
            else:
                parts.append(
                    types.Part.from_bytes(
                        data=base64.b64decode(part.data), mime_type=part.mime_type
                    )
                )
        return types.Content(role="user", parts=parts)


def _classify_api_error(e: Exception) -> ErrorKind:
    """Errors reported by the Gemini API (auth, quota, server, bad request) are
    model errors; everything else failed before a response came back."""
    if isinstance(e, AttachmentReadError):
        return ErrorKind.ATTACHMENT
    if isinstance(e, genai_errors.APIError):
        return ErrorKind.MODEL
    return ErrorKind.TRANSPORT


def _describe_error(e: Exception) -> str:
    return str(e)[:200] if str(e) else type(e).__name__


def _log_response_debug(operation: str, resp: Any) -> None:
    """Best-effort logging of useful response metadata without crashing."""
    try:
        finishes = []
        for cand in getattr(resp, "candidates", []) or []:
            finishes.append(getattr(cand, "finish_reason", None))
        prompt_feedback = getattr(resp, "prompt_feedback", None)
        block_reason = getattr(prompt_feedback, "block_reason", None) if prompt_feedback else None
        usage = getattr(resp, "usage_metadata", None)
        text = getattr(resp, "text", "")
        text_len = len(text) if isinstance(text, str) else 0
        logger.info(
            "%s: finish_reasons=%s block_reason=%s usage=%s text_len=%d",
            operation,
            finishes,
            block_reason,
            usage,
            text_len,
        )
    except Exception:
        logger.exception("%s: failed to inspect response", operation)


async def build_request(
    idea_text: str,
    attachments: Sequence[Attachment],
    on_encoded: Optional[OnEncoded] = None,
) -> GenerationRequest:
    """Assemble the request: one text part, then the image attachments in order.

    Non-image attachments are left out. Images are encoded concurrently; the
    output keeps source order regardless of which encode finishes first.

    Raises:
        AttachmentReadError: If any image cannot be read
    """
    images = [a for a in attachments if a.kind is AttachmentKind.IMAGE]

    async def _encode(attachment: Attachment) -> InlineImagePart:
        data = await encode_attachment(attachment)
        if on_encoded is not None:
            on_encoded(attachment)
        return InlineImagePart(mime_type=attachment.mime_type, data=data)

    image_parts = await asyncio.gather(*(_encode(a) for a in images))
    parts: Tuple[ContentPart, ...] = (TextPart(format_idea_text(idea_text)), *image_parts)
    return GenerationRequest(system_instruction=get_prd_prompt(), parts=parts)


class GenerationClient:
    """Generates a PRD from an idea with a Gemini model.

    A factory for the Gemini client is injected; ``None`` means no credential
    is configured and every call fails with a configuration error before any
    work is done. A fresh client is built for every call; a client's async
    transport stays bound to the event loop that first used it.
    """

    def __init__(
        self, client_factory: Optional[ClientFactory], model_name: str = DEFAULT_MODEL_NAME
    ):
        self._client_factory = client_factory
        self.model_name = model_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        if not settings.has_api_key:
            logger.warning("Gemini API key is not set (GEMINI_API_KEY, GOOGLE_API_KEY or API_KEY).")
            return cls(None, settings.model_name)
        api_key = settings.api_key
        return cls(lambda: genai.Client(api_key=api_key), settings.model_name)

    @property
    def is_configured(self) -> bool:
        return self._client_factory is not None

    async def generate(
        self,
        idea_text: str,
        attachments: Sequence[Attachment] = (),
        on_encoded: Optional[OnEncoded] = None,
    ) -> GenerationResult:
        if self._client_factory is None:
            logger.error("generate: no Gemini client configured")
            return GenerationError(ErrorKind.CONFIGURATION, MISSING_API_KEY_MESSAGE)

        try:
            request = await build_request(idea_text, attachments, on_encoded)
        except AttachmentReadError as e:
            return GenerationError(_classify_api_error(e), str(e))

        logger.info(
            "generate: calling model=%s, idea_len=%d, images=%d, attachments=%d",
            self.model_name,
            len(idea_text or ""),
            len(request.image_parts),
            len(attachments),
        )
        try:
            client = self._client_factory()
            resp = await client.aio.models.generate_content(
                model=self.model_name,
                contents=request.to_contents(),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_instruction
                ),
            )
        except Exception as e:
            logger.exception("generate: Gemini API call failed")
            return GenerationError(
                _classify_api_error(e), f"{COMMUNICATION_ERROR_PREFIX}: {_describe_error(e)}"
            )

        _log_response_debug("generate", resp)
        text = getattr(resp, "text", None)
        if text is None:
            logger.error("generate: response carried no text")
            return GenerationError(
                ErrorKind.MODEL, f"{COMMUNICATION_ERROR_PREFIX}: the model returned no text"
            )
        return DocumentText(text)
