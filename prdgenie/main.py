from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import streamlit as st

# Ensure project root is on sys.path so that 'prdgenie' is importable under `streamlit run`
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from prdgenie.config import Settings, load_settings
from prdgenie.controller import (
    SubmissionInFlightError,
    ValidationError,
    ViewController,
    rotate_messages,
)
from prdgenie.export import ExportFile, export_docx, export_markdown, export_pdf
from prdgenie.file_handler import (
    PendingAttachments,
    attachment_from_upload,
    format_bytes,
    kind_icon,
)
from prdgenie.llm import GenerationClient
from prdgenie.render import render_markdown
from prdgenie.state import Attachment, ExportOptions, FormView, IdeaInput, LoadingView, ResultView

APP_TITLE = "PRD Genie"
EXPORT_BASENAME = "prd"


def init_session_state() -> None:
    if "settings" not in st.session_state:
        st.session_state.settings = load_settings()
    if "controller" not in st.session_state:
        settings: Settings = st.session_state.settings
        st.session_state.controller = ViewController(GenerationClient.from_settings(settings))
    if "pending" not in st.session_state:
        st.session_state.pending = PendingAttachments()


@st.cache_data(show_spinner=False)
def _cached_docx(
    rendered_html: str, header: str, footer: str
) -> Tuple[Optional[ExportFile], Optional[str]]:
    return export_docx(rendered_html, f"{EXPORT_BASENAME}.docx", ExportOptions(header, footer))


@st.cache_data(show_spinner=False)
def _cached_pdf(
    rendered_html: str, header: str, footer: str
) -> Tuple[Optional[ExportFile], Optional[str]]:
    return export_pdf(rendered_html, f"{EXPORT_BASENAME}.pdf", ExportOptions(header, footer))


def _collect_uploads(uploaded_files) -> List[Attachment]:
    attachments: List[Attachment] = []
    for uploaded_file in uploaded_files or []:
        try:
            attachments.append(attachment_from_upload(uploaded_file))
        except ValueError as e:
            st.error(f"Could not add {uploaded_file.name}: {e}")
    return attachments


def idea_form(controller: ViewController) -> None:
    st.subheader("Describe Your App Idea")
    st.caption("Provide text, a sketch, or even a short video. Our AI will do the rest.")

    if controller.error:
        st.error(controller.error)

    text = st.text_area(
        "Your Idea in Words",
        height=200,
        placeholder=(
            "e.g., An app that uses AI to suggest recipes based on ingredients I have at home..."
        ),
        value=st.session_state.get("last_idea_text", ""),
    )
    uploaded_files = st.file_uploader(
        "Upload Files (Sketches, Wireframes)",
        accept_multiple_files=True,
        help=(
            "PNG, JPG, GIF up to 10MB. Only images are sent to the AI; "
            "video support is experimental."
        ),
    )

    pending: PendingAttachments = st.session_state.pending
    pending.clear()
    pending.add(_collect_uploads(uploaded_files))
    if len(pending):
        st.markdown("**Selected Files:**")
        for attachment in pending:
            cols = st.columns([0.08, 0.62, 0.3])
            cols[0].write(kind_icon(attachment))
            cols[1].write(attachment.name)
            cols[2].caption(format_bytes(attachment.size))

    submitted = st.button(
        "Create My PRD",
        type="primary",
        disabled=controller.is_loading,
        use_container_width=True,
    )
    if submitted:
        st.session_state.last_idea_text = text or ""
        try:
            controller.begin(IdeaInput(text=text or "", attachments=pending.as_tuple()))
        except (ValidationError, SubmissionInFlightError) as e:
            st.error(str(e))
            return
        st.rerun()


def loading_view(controller: ViewController) -> None:
    st.subheader("Generating Your PRD")
    message = st.empty()
    pending: PendingAttachments = st.session_state.pending
    images = pending.images()
    progress = st.progress(0, text="Preparing attachments...") if images else None

    def _on_encoded(attachment: Attachment) -> None:
        pending.mark_encoded(attachment)
        if progress is not None:
            done = sum(pending.progress(a) for a in images) // len(images)
            progress.progress(done, text=f"Encoded {attachment.name}")

    async def _generate() -> None:
        async with rotate_messages(lambda m: message.info(m)):
            await controller.run(on_encoded=_on_encoded)

    with st.spinner("Generating..."):
        asyncio.run(_generate())
    st.rerun()


def _download(
    container, label: str, export_file: Optional[ExportFile], error: Optional[str]
) -> None:
    if error:
        container.error(error)
        return
    if export_file is not None:
        container.download_button(
            label,
            data=export_file.data,
            file_name=export_file.filename,
            mime=export_file.mime_type,
            use_container_width=True,
        )


def result_view(controller: ViewController) -> None:
    content = controller.content or ""
    head_cols = st.columns([0.7, 0.3])
    head_cols[0].subheader("Your Generated PRD")
    if head_cols[1].button("New Idea", use_container_width=True):
        controller.reset()
        st.session_state.pending.clear()
        st.session_state.pop("last_idea_text", None)
        st.rerun()

    editing = st.toggle("Edit", value=False)
    if editing:
        edited = st.text_area("PRD (Markdown)", value=content, height=600)
        if edited != content:
            controller.edit(edited)
            content = edited
    else:
        st.markdown(content)

    with st.expander("Raw Markdown (copy)"):
        st.code(content, language="markdown")

    with st.expander("Custom Export Options"):
        header = st.text_input("Header Text", placeholder="e.g., Created by: Jane Doe")
        footer = st.text_input("Footer Text", placeholder="e.g., Version 1.0 - Confidential")

    rendered_html = render_markdown(content)
    cols = st.columns(3)
    md_file = export_markdown(content, f"{EXPORT_BASENAME}.md")
    _download(cols[0], "⬇️ Markdown", md_file, None)
    _download(cols[1], "⬇️ DOCX", *_cached_docx(rendered_html, header, footer))
    _download(cols[2], "⬇️ PDF", *_cached_pdf(rendered_html, header, footer))


def main():
    st.set_page_config(page_title=APP_TITLE, page_icon="📝", layout="wide")
    init_session_state()
    st.title(APP_TITLE)

    settings: Settings = st.session_state.settings
    if not settings.has_api_key:
        st.warning(
            "API key is not set (GEMINI_API_KEY, GOOGLE_API_KEY or API_KEY). "
            "PRD generation will fail until it is configured."
        )

    controller: ViewController = st.session_state.controller
    state = controller.state
    if isinstance(state, LoadingView):
        loading_view(controller)
    elif isinstance(state, ResultView):
        result_view(controller)
    elif isinstance(state, FormView):
        idea_form(controller)


if __name__ == "__main__":
    main()
