"""Tests for request building and PRD generation with a mocked Gemini client."""

import asyncio
import base64
import sys
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from google.genai import errors as genai_errors
from google.genai import types

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from prdgenie.config import Settings
from prdgenie.file_handler import attachment_from_bytes
from prdgenie.llm import (
    COMMUNICATION_ERROR_PREFIX,
    GenerationClient,
    InlineImagePart,
    TextPart,
    build_request,
)
from prdgenie.prompts import get_prd_prompt
from prdgenie.state import Attachment, DocumentText, ErrorKind, GenerationError


def _client(text="# PRD\n\nBody", side_effect=None):
    client = MagicMock()
    response = MagicMock()
    response.text = text
    response.candidates = []
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=side_effect)
    return client


def _generator(client, model_name="gemini-2.5-flash"):
    return GenerationClient(lambda: client, model_name)


def _slow_attachment(name, data, delay):
    def _load():
        time.sleep(delay)
        return data

    return Attachment(name=name, mime_type="image/png", size=len(data), loader=_load)


class TestBuildRequest:
    """Request assembly: one text part followed by image parts."""

    def test_text_only_request(self):
        """Test that a text-only idea yields exactly one prefixed text part."""
        request = asyncio.run(build_request("A recipe app", []))

        assert request.parts == (TextPart("Here is the user's idea:\n\nA recipe app"),)
        assert request.image_parts == []
        assert request.system_instruction == get_prd_prompt()

    def test_non_images_are_dropped(self):
        """Test that videos and other files are neither read nor sent."""
        video_loader = MagicMock(return_value=b"video")
        attachments = [
            attachment_from_bytes("sketch.png", b"png-bytes"),
            Attachment(name="demo.mp4", mime_type="video/mp4", size=5, loader=video_loader),
            attachment_from_bytes("notes.pdf", b"pdf", mime_type="application/pdf"),
        ]
        request = asyncio.run(build_request("", attachments))

        assert len(request.parts) == 2
        assert request.text_part.text == "Here is the user's idea:\n\n"
        assert request.image_parts == [
            InlineImagePart("image/png", base64.b64encode(b"png-bytes").decode("ascii"))
        ]
        video_loader.assert_not_called()

    def test_image_order_kept_when_encodes_finish_out_of_order(self):
        """Test that image parts follow attachment order, not completion order."""
        first = _slow_attachment("first.png", b"one", delay=0.2)
        second = _slow_attachment("second.png", b"two", delay=0.0)
        encoded = []

        request = asyncio.run(build_request("x", [first, second], on_encoded=encoded.append))

        decoded = [base64.b64decode(p.data) for p in request.image_parts]
        assert decoded == [b"one", b"two"]
        assert {a.name for a in encoded} == {"first.png", "second.png"}

    def test_to_contents(self):
        """Test conversion of the request into a Gemini Content object."""
        request = asyncio.run(
            build_request("idea", [attachment_from_bytes("a.jpg", b"jpeg-bytes")])
        )
        contents = request.to_contents()

        assert isinstance(contents, types.Content)
        assert contents.role == "user"
        assert contents.parts[0].text == "Here is the user's idea:\n\nidea"
        assert contents.parts[1].inline_data.mime_type == "image/jpeg"
        assert contents.parts[1].inline_data.data == b"jpeg-bytes"


class TestGenerate:
    """GenerationClient.generate outcomes."""

    def test_text_only_success(self):
        """Test a successful text-only generation and the call arguments."""
        client = _client("# PRD for recipes")

        result = asyncio.run(_generator(client).generate("A recipe app"))

        assert result == DocumentText("# PRD for recipes")
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert len(kwargs["contents"].parts) == 1
        assert kwargs["contents"].parts[0].text == "Here is the user's idea:\n\nA recipe app"
        assert kwargs["config"].system_instruction == get_prd_prompt()

    def test_system_instruction_not_in_contents(self):
        """Test that the system instruction travels only in the config."""
        client = _client()
        asyncio.run(_generator(client).generate("idea"))

        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert "PRDGenie" not in kwargs["contents"].parts[0].text

    def test_image_only_submission(self):
        """Test that an empty idea with an image still sends the text part first."""
        client = _client()
        attachments = (
            attachment_from_bytes("sketch.png", b"png-bytes"),
            attachment_from_bytes("demo.mp4", b"video", mime_type="video/mp4"),
        )

        result = asyncio.run(_generator(client).generate("", attachments))

        assert isinstance(result, DocumentText)
        parts = client.aio.models.generate_content.call_args.kwargs["contents"].parts
        assert len(parts) == 2
        assert parts[0].text == "Here is the user's idea:\n\n"
        assert parts[1].inline_data.mime_type == "image/png"

    def test_text_returned_unchanged(self):
        """Test that the model text is returned without trimming or cleanup."""
        raw = "  # Title\n\n- item  \n\n```\ncode\n```\n"
        result = asyncio.run(_generator(_client(raw)).generate("idea"))
        assert result == DocumentText(raw)

    def test_missing_credential_fails_before_any_work(self):
        """Test that no attachment is read when no client is configured."""
        loader = MagicMock(return_value=b"png")
        attachment = Attachment(name="a.png", mime_type="image/png", size=3, loader=loader)

        result = asyncio.run(GenerationClient(None).generate("idea", [attachment]))

        assert isinstance(result, GenerationError)
        assert result.kind is ErrorKind.CONFIGURATION
        assert "API key" in result.message
        loader.assert_not_called()

    def test_from_settings_without_key(self):
        """Test that settings without a key produce an unconfigured client."""
        generator = GenerationClient.from_settings(Settings(api_key=None))
        assert generator.is_configured is False

    def test_from_settings_with_key_builds_lazily(self):
        """Test that a configured client does not contact Gemini until used."""
        generator = GenerationClient.from_settings(Settings(api_key="test-key"))
        assert generator.is_configured is True
        assert generator.model_name == "gemini-2.5-flash"

    def test_network_failure_is_transport_error(self):
        """Test that a connection failure is reported as a transport error."""
        client = _client(side_effect=ConnectionError("Network down"))
        result = asyncio.run(_generator(client).generate("idea"))

        assert isinstance(result, GenerationError)
        assert result.kind is ErrorKind.TRANSPORT
        assert result.message.startswith(COMMUNICATION_ERROR_PREFIX)
        assert "Network down" in result.message

    def test_api_error_is_model_error(self):
        """Test that an error reported by the Gemini API is a model error."""
        error = genai_errors.ClientError(
            400, {"error": {"code": 400, "message": "API key not valid", "status": "INVALID"}}
        )
        result = asyncio.run(_generator(_client(side_effect=error)).generate("idea"))

        assert isinstance(result, GenerationError)
        assert result.kind is ErrorKind.MODEL
        assert "API key not valid" in result.message

    def test_empty_response_is_model_error(self):
        """Test that a response without text is a model error."""
        result = asyncio.run(_generator(_client(text=None)).generate("idea"))

        assert isinstance(result, GenerationError)
        assert result.kind is ErrorKind.MODEL

    def test_attachment_read_failure_aborts_without_model_call(self):
        """Test that an unreadable image aborts before any model call."""
        client = _client()
        broken = Attachment(
            name="broken.png",
            mime_type="image/png",
            size=3,
            loader=MagicMock(side_effect=OSError("unreadable")),
        )

        ok = attachment_from_bytes("ok.png", b"1")
        result = asyncio.run(_generator(client).generate("idea", [ok, broken]))

        assert isinstance(result, GenerationError)
        assert result.kind is ErrorKind.ATTACHMENT
        assert "broken.png" in result.message
        client.aio.models.generate_content.assert_not_called()


class TestRepeatedGeneration:
    """One GenerationClient serves several generations, each in its own event loop."""

    def test_each_generation_gets_a_client_for_its_own_loop(self):
        """Test that two asyncio.run calls both succeed with loop-bound clients."""
        clients = []

        def factory():
            bound_loop = {}

            async def generate_content(**kwargs):
                loop = asyncio.get_running_loop()
                if bound_loop.setdefault("loop", loop) is not loop or loop.is_closed():
                    raise RuntimeError("Event loop is closed")
                response = MagicMock()
                response.text = f"# PRD {len(clients)}"
                response.candidates = []
                return response

            client = MagicMock()
            client.aio.models.generate_content = AsyncMock(side_effect=generate_content)
            clients.append(client)
            return client

        generator = GenerationClient(factory)

        first = asyncio.run(generator.generate("idea one"))
        second = asyncio.run(generator.generate("idea two"))

        assert first == DocumentText("# PRD 1")
        assert second == DocumentText("# PRD 2")
        assert len(clients) == 2
        for client in clients:
            assert client.aio.models.generate_content.await_count == 1

    def test_factory_not_called_when_attachment_fails(self):
        """Test that no client is built when the request cannot be assembled."""
        factory = MagicMock()
        broken = Attachment(
            name="broken.png",
            mime_type="image/png",
            size=3,
            loader=MagicMock(side_effect=OSError("unreadable")),
        )

        result = asyncio.run(GenerationClient(factory).generate("idea", [broken]))

        assert result.kind is ErrorKind.ATTACHMENT
        factory.assert_not_called()
