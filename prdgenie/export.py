from __future__ import annotations

import copy
import html
import logging
import shutil
import tempfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple, Union

from bs4 import Tag
from docx import Document
from docx.enum.text import WD_COLOR_INDEX
from docx.shared import Pt, RGBColor, Twips
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from prdgenie.render import (
    DEFAULT_RENDER_WIDTH,
    FOOTER_CLASS,
    HEADER_CLASS,
    Block,
    Run,
    build_container,
    html_to_blocks,
    parse_html,
    rasterize,
)
from prdgenie.state import ExportOptions

# Logger (to terminal)
logger = logging.getLogger("prdgenie.export")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

MARKDOWN_MIME_TYPE = "text/markdown"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MIME_TYPE = "application/pdf"

DOCX_MARGIN = Twips(720)
PDF_SCALE = 2

_DECORATION_STYLE = "font-size: 10px; color: #555;"


@dataclass(frozen=True)
class ExportFile:
    filename: str
    data: bytes
    mime_type: str


def _with_extension(filename: str, extension: str) -> str:
    name = (filename or "").strip() or "prd"
    if not name.lower().endswith(extension):
        name = f"{name}{extension}"
    return name


def export_markdown(content: str, filename: str = "prd.md") -> ExportFile:
    """Raw Markdown passthrough; no header or footer."""
    return ExportFile(
        _with_extension(filename, ".md"), (content or "").encode("utf-8"), MARKDOWN_MIME_TYPE
    )


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------


def compose_docx_html(rendered_html: str, options: Optional[ExportOptions] = None) -> str:
    """Wrap rendered HTML with the optional header (before) and footer (after)."""
    options = options or ExportOptions()
    final_html = rendered_html or ""
    if options.header_text:
        final_html = (
            f'<p class="{HEADER_CLASS}" style="{_DECORATION_STYLE}">'
            f"{html.escape(options.header_text)}</p><br/>{final_html}"
        )
    if options.footer_text:
        final_html = (
            f'{final_html}<br/><p class="{FOOTER_CLASS}" style="{_DECORATION_STYLE}">'
            f"{html.escape(options.footer_text)}</p>"
        )
    return final_html


def _add_runs(paragraph, runs: List[Run], size: float = 11) -> None:
    """Add python-docx runs carrying bold / italic / code styling."""
    for r in runs:
        run = paragraph.add_run(r.text)
        if r.code:
            run.font.name = "Consolas"
            run.font.highlight_color = WD_COLOR_INDEX.GRAY_25
        run.bold = r.bold or None
        run.italic = r.italic or None
        run.font.size = Pt(size)


def _list_style(base: str, level: int) -> str:
    return base if level <= 0 else f"{base} {min(level + 1, 3)}"


def _add_decoration(doc, text: str) -> None:
    p = doc.add_paragraph()
    run = p.add_run(text)
    run.font.size = Pt(7.5)  # 10px
    run.font.color.rgb = RGBColor(0x55, 0x55, 0x55)


def _add_table(doc, rows: List[List[str]]) -> None:
    columns = max(len(r) for r in rows)
    if columns == 0:
        return
    table = doc.add_table(rows=len(rows), cols=columns)
    table.style = "Table Grid"
    for i, row in enumerate(rows):
        for j, value in enumerate(row):
            cell = table.cell(i, j)
            cell.text = value
            if i == 0:
                for run in cell.paragraphs[0].runs:
                    run.bold = True


def blocks_to_docx(blocks: List[Block]) -> bytes:
    doc = Document()
    for section in doc.sections:
        section.top_margin = DOCX_MARGIN
        section.right_margin = DOCX_MARGIN
        section.bottom_margin = DOCX_MARGIN
        section.left_margin = DOCX_MARGIN

    for block in blocks:
        if block.kind == "blank":
            doc.add_paragraph()
            continue
        if block.kind in ("header", "footer"):
            _add_decoration(doc, block.text)
            continue
        if block.kind == "heading":
            doc.add_heading(block.text, level=min(max(block.level, 1), 9))
            continue
        if block.kind == "bullet":
            p = doc.add_paragraph(style=_list_style("List Bullet", block.level))
            _add_runs(p, block.runs)
            continue
        if block.kind == "number":
            p = doc.add_paragraph(style=_list_style("List Number", block.level))
            _add_runs(p, block.runs)
            continue
        if block.kind == "quote":
            p = doc.add_paragraph(style="Intense Quote")
            _add_runs(p, block.runs)
            continue
        if block.kind == "codeblock":
            for line in (block.text or "").splitlines() or [""]:
                p = doc.add_paragraph()
                run = p.add_run(line)
                run.font.name = "Consolas"
                run.font.size = Pt(10)
                run.font.highlight_color = WD_COLOR_INDEX.GRAY_25
            continue
        if block.kind == "table":
            _add_table(doc, block.rows)
            continue
        if block.kind == "rule":
            doc.add_paragraph()
            continue
        p = doc.add_paragraph()
        _add_runs(p, block.runs)
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def export_docx(
    rendered_html: str, filename: str = "prd.docx", options: Optional[ExportOptions] = None
) -> Tuple[Optional[ExportFile], Optional[str]]:
    """Convert rendered HTML (plus optional header/footer) to a Word document.

    Returns ``(file, None)`` on success and ``(None, message)`` on failure; the
    failure is logged here and the message is meant to be shown once.
    """
    try:
        composite = compose_docx_html(rendered_html, options)
        data = blocks_to_docx(html_to_blocks(composite))
        logger.info("export_docx: html_len=%d, bytes=%d", len(composite), len(data))
        return ExportFile(_with_extension(filename, ".docx"), data, DOCX_MIME_TYPE), None
    except Exception as e:
        logger.exception("export_docx: failed to export as DOCX")
        return None, f"Failed to export as DOCX: {e}"


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


def _image_to_pdf(image_path: Path, size: Tuple[int, int]) -> bytes:
    """One page, sized exactly to the image, with the image drawn edge to edge."""
    width, height = size
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=(width, height), invariant=1)
    pdf.drawImage(ImageReader(str(image_path)), 0, 0, width=width, height=height)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def export_pdf(
    rendered: Union[str, Tag],
    filename: str = "prd.pdf",
    options: Optional[ExportOptions] = None,
    width: int = DEFAULT_RENDER_WIDTH,
) -> Tuple[Optional[ExportFile], Optional[str]]:
    """Rasterize the rendered document and wrap the image in a PDF.

    Works on a detached copy of ``rendered``; the copy and its raster live in
    a temporary staging directory that is always removed before returning.
    """
    options = options or ExportOptions()
    staging = Path(tempfile.mkdtemp(prefix="prdgenie-pdf-"))
    try:
        clone = copy.copy(rendered) if isinstance(rendered, Tag) else parse_html(rendered)
        container = build_container(
            clone, header=options.header_text, footer=options.footer_text, width=width
        )
        image = rasterize(container, scale=PDF_SCALE)
        image_path = staging / "page.png"
        image.save(image_path, format="PNG")
        data = _image_to_pdf(image_path, image.size)
        logger.info("export_pdf: image=%dx%d, bytes=%d", image.width, image.height, len(data))
        return ExportFile(_with_extension(filename, ".pdf"), data, PDF_MIME_TYPE), None
    except Exception as e:
        logger.exception("export_pdf: failed to export as PDF")
        return None, f"Failed to export as PDF: {e}"
    finally:
        shutil.rmtree(staging, ignore_errors=True)
