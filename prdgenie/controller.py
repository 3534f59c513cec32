from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, Optional, Sequence

from prdgenie.llm import GenerationClient, OnEncoded
from prdgenie.state import (
    ErrorKind,
    FormView,
    GenerationError,
    IdeaInput,
    LoadingView,
    ResultView,
    ViewState,
)

# Logger (to terminal)
logger = logging.getLogger("prdgenie.controller")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

EMPTY_IDEA_MESSAGE = "Please provide an idea in text or upload a file."
GENERATION_FAILED_PREFIX = "Failed to generate PRD"

LOADING_MESSAGES = (
    "Igniting neural networks...",
    "Parsing your product vision...",
    "Teaching the AI about your idea...",
    "Synthesizing insights from market data...",
    "Simulating user personas and journeys...",
    "Drafting initial feature hypotheses...",
    "Applying product management best practices...",
    "Polishing the final document, just for you...",
)
LOADING_MESSAGE_INTERVAL = 2.5


class ValidationError(ValueError):
    """Submission rejected before any request is built."""


class SubmissionInFlightError(RuntimeError):
    """A generation is already running."""


def validate_idea(idea: IdeaInput) -> None:
    if idea.is_empty():
        raise ValidationError(EMPTY_IDEA_MESSAGE)


class ViewController:
    """Form -> Loading -> Result state machine around a GenerationClient.

    Only one generation may be in flight; ``begin`` refuses while Loading.
    """

    def __init__(self, generator: GenerationClient):
        self._generator = generator
        self.state: ViewState = FormView()
        self._pending: Optional[IdeaInput] = None

    @property
    def is_loading(self) -> bool:
        return isinstance(self.state, LoadingView)

    @property
    def content(self) -> Optional[str]:
        return self.state.content if isinstance(self.state, ResultView) else None

    @property
    def error(self) -> Optional[str]:
        return self.state.error if isinstance(self.state, FormView) else None

    def begin(self, idea: IdeaInput) -> None:
        """Validate a submission and move to Loading.

        Raises:
            SubmissionInFlightError: If a generation is already running
            ValidationError: If the idea has neither text nor attachments
        """
        if self.is_loading:
            raise SubmissionInFlightError("A PRD is already being generated.")
        validate_idea(idea)
        self._pending = idea
        self.state = LoadingView()

    async def run(self, on_encoded: Optional[OnEncoded] = None) -> ViewState:
        """Run the generation started by ``begin`` and settle the view."""
        idea = self._pending
        if not self.is_loading or idea is None:
            return self.state
        try:
            result = await self._generator.generate(idea.text, idea.attachments, on_encoded)
        except Exception as e:
            logger.exception("generation raised unexpectedly")
            result = GenerationError(ErrorKind.MODEL, str(e) or type(e).__name__)
        finally:
            self._pending = None
        if isinstance(result, GenerationError):
            logger.warning("generation failed (%s): %s", result.kind.value, result.message)
            self.state = FormView(error=f"{GENERATION_FAILED_PREFIX}: {result.message}")
        else:
            self.state = ResultView(content=result.text)
        return self.state

    async def submit(self, idea: IdeaInput, on_encoded: Optional[OnEncoded] = None) -> ViewState:
        self.begin(idea)
        return await self.run(on_encoded)

    def edit(self, content: str) -> None:
        if isinstance(self.state, ResultView):
            self.state = ResultView(content=content)

    def reset(self) -> None:
        self._pending = None
        self.state = FormView()


@contextlib.asynccontextmanager
async def rotate_messages(
    on_message: Callable[[str], None],
    messages: Sequence[str] = LOADING_MESSAGES,
    interval: float = LOADING_MESSAGE_INTERVAL,
) -> AsyncIterator[Optional[asyncio.Task]]:
    """Cycle ``messages`` through ``on_message`` while the body runs.

    The rotating task is cancelled and awaited when the block exits. With no
    messages nothing is started and ``None`` is yielded.
    """
    if not messages:
        yield None
        return

    async def _rotate() -> None:
        index = 0
        while True:
            on_message(messages[index % len(messages)])
            index += 1
            await asyncio.sleep(interval)

    task = asyncio.create_task(_rotate())
    try:
        yield task
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
