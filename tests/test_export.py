"""Tests for Markdown, DOCX and PDF export."""

import sys
import tempfile
from io import BytesIO
from pathlib import Path
from unittest.mock import patch

from docx import Document
from docx.shared import Twips
from pypdf import PdfReader

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from prdgenie.export import (
    DOCX_MIME_TYPE,
    MARKDOWN_MIME_TYPE,
    PDF_MIME_TYPE,
    compose_docx_html,
    export_docx,
    export_markdown,
    export_pdf,
)
from prdgenie.render import DEFAULT_RENDER_WIDTH, parse_html, render_markdown
from prdgenie.state import ExportOptions

PRD_MD = """# Product Requirement Document (PRD)

## 1. One-line summary
A **recipe** app for home cooks.

- Must-have: ingredient scan
- Nice-to-have: meal plans

| KPI | Target |
|---|---|
| DAU | 10k |
"""


class TestMarkdownExport:
    """Raw Markdown passthrough."""

    def test_bytes_match_content(self):
        """Test that Markdown export is the content as UTF-8 bytes."""
        content = "# Título\n\n- ünïcode ✓\n"
        export_file = export_markdown(content)

        assert export_file.filename == "prd.md"
        assert export_file.mime_type == MARKDOWN_MIME_TYPE
        assert export_file.data.decode("utf-8") == content

    def test_filename_extension_added(self):
        """Test that a missing .md extension is added."""
        assert export_markdown("x", "my-prd").filename == "my-prd.md"


class TestComposeDocxHtml:
    """Header and footer wrap the rendered document."""

    def test_header_before_and_footer_after(self):
        """Test header and footer placement around the content."""
        html = compose_docx_html("<h1>T</h1>", ExportOptions("H", "F"))

        header_at = html.index('class="export-header"')
        content_at = html.index("<h1>T</h1>")
        footer_at = html.index('class="export-footer"')
        assert header_at < content_at < footer_at
        assert "font-size: 10px; color: #555;" in html

    def test_no_options_leaves_html_unchanged(self):
        """Test that blank options leave the HTML untouched."""
        assert compose_docx_html("<p>x</p>") == "<p>x</p>"
        assert compose_docx_html("<p>x</p>", ExportOptions("  ", "")) == "<p>x</p>"

    def test_decoration_escaped(self):
        """Test that header text is HTML-escaped."""
        html = compose_docx_html("<p>x</p>", ExportOptions(header="<b>Jane</b> & co"))
        assert "&lt;b&gt;Jane&lt;/b&gt; &amp; co" in html


class TestDocxExport:
    """Word export through python-docx."""

    def _document(self, options=None):
        export_file, error = export_docx(render_markdown(PRD_MD), options=options)
        assert error is None
        assert export_file.mime_type == DOCX_MIME_TYPE
        assert export_file.filename == "prd.docx"
        return Document(BytesIO(export_file.data))

    def test_structure(self):
        """Test headings, paragraphs, bullets and tables in the Word document."""
        doc = self._document()

        paragraphs = [(p.style.name, p.text) for p in doc.paragraphs if p.text]
        assert paragraphs[0] == ("Heading 1", "Product Requirement Document (PRD)")
        assert ("Heading 2", "1. One-line summary") in paragraphs
        assert ("List Bullet", "Must-have: ingredient scan") in paragraphs
        assert ("Normal", "A recipe app for home cooks.") in paragraphs

        table = doc.tables[0]
        assert table.cell(0, 0).text == "KPI"
        assert table.cell(1, 1).text == "10k"

    def test_bold_run_kept(self):
        """Test that bold text stays bold in Word."""
        doc = self._document()
        summary = next(p for p in doc.paragraphs if p.text.startswith("A recipe"))
        assert any(r.bold and r.text == "recipe" for r in summary.runs)

    def test_margins(self):
        """Test 720-twip margins on every side."""
        section = self._document().sections[0]
        for margin in (
            section.top_margin,
            section.right_margin,
            section.bottom_margin,
            section.left_margin,
        ):
            assert margin == Twips(720)

    def test_header_and_footer(self):
        """Test header and footer paragraphs at the document edges."""
        options = ExportOptions("Created by: Jane Doe", "Version 1.0 - Confidential")
        texts = [p.text for p in self._document(options).paragraphs if p.text]

        assert texts[0] == "Created by: Jane Doe"
        assert texts[-1] == "Version 1.0 - Confidential"

    def test_header_markup_is_literal(self):
        """Test that markup in the header is shown literally."""
        texts = [
            p.text for p in self._document(ExportOptions(header="<b>x</b>")).paragraphs if p.text
        ]
        assert texts[0] == "<b>x</b>"

    def test_repeated_export_structurally_identical(self):
        """Test that exporting twice gives the same paragraphs, tables and margins."""

        def _structure(doc):
            section = doc.sections[0]
            return (
                [
                    (p.style.name, p.text, [(r.text, r.bold) for r in p.runs])
                    for p in doc.paragraphs
                ],
                [[[cell.text for cell in row.cells] for row in t.rows] for t in doc.tables],
                (
                    section.top_margin,
                    section.right_margin,
                    section.bottom_margin,
                    section.left_margin,
                ),
            )

        options = ExportOptions("Created by: Jane Doe", "Version 1.0 - Confidential")
        first = _structure(self._document(options))
        second = _structure(self._document(options))

        assert first == second
        assert first[1] == [[["KPI", "Target"], ["DAU", "10k"]]]

    def test_failure_returns_error(self):
        """Test that a conversion failure returns one error message."""
        with patch("prdgenie.export.blocks_to_docx", side_effect=RuntimeError("disk full")):
            export_file, error = export_docx("<p>x</p>")

        assert export_file is None
        assert error == "Failed to export as DOCX: disk full"


class TestPdfExport:
    """PDF export through an off-screen raster."""

    def _pdf(self, rendered=None, options=None):
        export_file, error = export_pdf(rendered or render_markdown(PRD_MD), options=options)
        assert error is None
        assert export_file.mime_type == PDF_MIME_TYPE
        assert export_file.filename == "prd.pdf"
        return export_file.data

    def test_single_page_sized_to_image(self):
        """Test that the PDF has one page sized to the raster."""
        reader = PdfReader(BytesIO(self._pdf()))

        assert len(reader.pages) == 1
        page = reader.pages[0]
        assert float(page.mediabox.width) == (DEFAULT_RENDER_WIDTH + 64) * 2
        assert float(page.mediabox.height) > 0
        xobjects = page["/Resources"]["/XObject"]
        assert len(xobjects) == 1

    def test_decoration_adds_height(self):
        """Test that header and footer make the page taller."""
        plain = PdfReader(BytesIO(self._pdf())).pages[0]
        decorated = PdfReader(
            BytesIO(self._pdf(options=ExportOptions("Top", "Bottom")))
        ).pages[0]
        assert float(decorated.mediabox.height) > float(plain.mediabox.height)
        assert float(decorated.mediabox.width) == float(plain.mediabox.width)

    def test_repeated_export_identical(self):
        """Test that exporting twice gives identical bytes."""
        options = ExportOptions("Top", "Bottom")
        assert self._pdf(options=options) == self._pdf(options=options)

    def test_source_element_not_modified(self):
        """Test that the rendered element is not changed by export."""
        soup = parse_html(f"<div>{render_markdown(PRD_MD)}</div>")
        before = str(soup)

        self._pdf(rendered=soup.div, options=ExportOptions("Top", "Bottom"))

        assert str(soup) == before

    def test_staging_removed_on_success(self, tmp_path, monkeypatch):
        """Test that the staging directory is removed after export."""
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        self._pdf()
        assert list(tmp_path.iterdir()) == []

    def test_staging_removed_on_failure(self, tmp_path, monkeypatch):
        """Test that the staging directory is removed when rasterizing fails."""
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        with patch("prdgenie.export.rasterize", side_effect=RuntimeError("raster failed")):
            export_file, error = export_pdf(render_markdown(PRD_MD))

        assert export_file is None
        assert error == "Failed to export as PDF: raster failed"
        assert list(tmp_path.iterdir()) == []
