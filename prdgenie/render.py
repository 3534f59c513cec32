"""Markdown rendering and rasterization of rendered documents.

The rendered document is HTML produced from Markdown. Both exporters read it
back through :func:`html_to_blocks`, a flat block model in the spirit of a
simple Markdown parser: headings, paragraphs, list items, quotes, code blocks,
tables and rules. The PDF exporter lays those blocks out in an off-screen
:class:`RenderContainer` and rasterizes it with Pillow.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple, Union

import mistune
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment
from PIL import Image, ImageDraw, ImageFont

# Logger (to terminal)
logger = logging.getLogger("prdgenie.render")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

HEADER_CLASS = "export-header"
FOOTER_CLASS = "export-footer"

_markdown = mistune.create_markdown(escape=True, plugins=["table", "strikethrough", "url"])


def render_markdown(markdown_text: str) -> str:
    """Render Markdown (GitHub-flavoured tables and strikethrough) to HTML."""
    return _markdown(markdown_text or "")


@dataclass
class Run:
    text: str
    bold: bool = False
    italic: bool = False
    code: bool = False


@dataclass
class Block:
    """One block-level element of a rendered document."""

    kind: str
    runs: List[Run] = field(default_factory=list)
    level: int = 0
    number: Optional[int] = None
    rows: List[List[str]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(r.text for r in self.runs)


_HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_SKIPPED = {"script", "style", "head", "title", "meta"}


def _inline_runs(
    node: Tag, bold: bool = False, italic: bool = False, code: bool = False
) -> List[Run]:
    runs: List[Run] = []
    for child in node.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            text = str(child) if code else re.sub(r"\s+", " ", str(child))
            if text:
                runs.append(Run(text, bold, italic, code))
            continue
        if not isinstance(child, Tag) or child.name in _SKIPPED:
            continue
        name = child.name
        if name in ("ul", "ol"):
            # nested lists become their own blocks
            continue
        if name == "br":
            runs.append(Run("\n", bold, italic, code))
        elif name == "img":
            alt = child.get("alt") or "image"
            runs.append(Run(f"[{alt}]", bold, italic, code))
        elif name in ("strong", "b"):
            runs.extend(_inline_runs(child, True, italic, code))
        elif name in ("em", "i"):
            runs.extend(_inline_runs(child, bold, True, code))
        elif name == "code":
            runs.extend(_inline_runs(child, bold, italic, True))
        else:
            runs.extend(_inline_runs(child, bold, italic, code))
            if name == "p":
                runs.append(Run(" ", bold, italic, code))
    return _trim_runs(runs)


def _trim_runs(runs: List[Run]) -> List[Run]:
    while runs and not runs[0].text.strip():
        runs.pop(0)
    while runs and not runs[-1].text.strip():
        runs.pop()
    if runs:
        runs[0] = Run(runs[0].text.lstrip(), runs[0].bold, runs[0].italic, runs[0].code)
        runs[-1] = Run(runs[-1].text.rstrip(), runs[-1].bold, runs[-1].italic, runs[-1].code)
    return runs


def _collect_list(node: Tag, blocks: List[Block], depth: int) -> None:
    ordered = node.name == "ol"
    try:
        start = int(node.get("start", 1))
    except (TypeError, ValueError):
        start = 1
    for offset, li in enumerate(node.find_all("li", recursive=False)):
        runs = _inline_runs(li)
        blocks.append(
            Block(
                "number" if ordered else "bullet",
                runs,
                level=depth,
                number=start + offset if ordered else None,
            )
        )
        for nested in li.find_all(["ul", "ol"], recursive=False):
            _collect_list(nested, blocks, depth + 1)


def _collect(node, blocks: List[Block], depth: int = 0) -> None:
    if isinstance(node, Comment):
        return
    if isinstance(node, NavigableString):
        text = re.sub(r"\s+", " ", str(node)).strip()
        if text:
            blocks.append(Block("paragraph", [Run(text)]))
        return
    if not isinstance(node, Tag) or node.name in _SKIPPED:
        return

    name = node.name
    if name in _HEADINGS:
        blocks.append(Block("heading", _inline_runs(node), level=int(name[1])))
    elif name == "p":
        classes = node.get("class") or []
        if HEADER_CLASS in classes:
            blocks.append(Block("header", [Run(node.get_text(" ", strip=True))]))
        elif FOOTER_CLASS in classes:
            blocks.append(Block("footer", [Run(node.get_text(" ", strip=True))]))
        else:
            runs = _inline_runs(node)
            if runs:
                blocks.append(Block("paragraph", runs))
    elif name == "br":
        blocks.append(Block("blank"))
    elif name in ("ul", "ol"):
        _collect_list(node, blocks, depth)
    elif name == "blockquote":
        inner: List[Block] = []
        for child in node.children:
            _collect(child, inner, depth)
        for block in inner:
            if block.kind == "paragraph":
                block.kind = "quote"
            blocks.append(block)
    elif name == "pre":
        blocks.append(Block("codeblock", [Run(node.get_text().rstrip("\n"), code=True)]))
    elif name == "table":
        rows = []
        for tr in node.find_all("tr"):
            rows.append([cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"])])
        if rows:
            blocks.append(Block("table", rows=rows))
    elif name == "hr":
        blocks.append(Block("rule"))
    elif name in ("div", "section", "article", "body", "html", "main", "[document]"):
        for child in node.children:
            _collect(child, blocks, depth)
    else:
        runs = _inline_runs(node)
        if runs:
            blocks.append(Block("paragraph", runs))


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def html_to_blocks(source: Union[str, Tag]) -> List[Block]:
    """Flatten rendered HTML (string or parsed element) into blocks."""
    root = parse_html(source) if isinstance(source, str) else source
    blocks: List[Block] = []
    _collect(root, blocks)
    return blocks


# ---------------------------------------------------------------------------
# Off-screen container and rasterizer
# ---------------------------------------------------------------------------

DEFAULT_RENDER_WIDTH = 800  # CSS px of the on-screen document column


@dataclass(frozen=True)
class Theme:
    background: str = "#1f2937"
    foreground: str = "#d1d5db"
    heading: str = "#f3f4f6"
    muted: str = "#6b7280"
    accent: str = "#6366f1"
    code_background: str = "#111827"
    rule: str = "#374151"


@dataclass
class RenderContainer:
    """Detached layout root holding a copy of the document plus decoration."""

    width: int
    blocks: List[Block]
    padding: int = 32
    theme: Theme = field(default_factory=Theme)

    @property
    def outer_width(self) -> int:
        return self.width + 2 * self.padding


def build_container(
    content: Union[str, Tag],
    header: Optional[str] = None,
    footer: Optional[str] = None,
    width: int = DEFAULT_RENDER_WIDTH,
    theme: Optional[Theme] = None,
) -> RenderContainer:
    blocks: List[Block] = []
    if header:
        blocks.append(Block("header", [Run(header)]))
    blocks.extend(html_to_blocks(content))
    if footer:
        blocks.append(Block("footer", [Run(footer)]))
    return RenderContainer(width=width, blocks=blocks, theme=theme or Theme())


FONT_PATH_ENV_VAR = "PRDGENIE_FONT_PATH"

# Fonts covering CJK as well as Latin; checked first.
CJK_FONT_CANDIDATES = (
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/opentype/ipafont-gothic/ipagp.ttf",
    "/System/Library/Fonts/Hiragino Sans GB.ttc",
    "/System/Library/Fonts/PingFang.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    "C:/Windows/Fonts/msgothic.ttc",
    "C:/Windows/Fonts/msyh.ttc",
)
FONT_CANDIDATES = CJK_FONT_CANDIDATES + (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "C:/Windows/Fonts/arial.ttf",
)


def find_font_path() -> Optional[str]:
    """First existing font file: ``PRDGENIE_FONT_PATH``, then known system fonts."""
    configured = (os.getenv(FONT_PATH_ENV_VAR) or "").strip()
    candidates = ((configured,) if configured else ()) + FONT_CANDIDATES
    for candidate in candidates:
        if Path(candidate).is_file():
            return candidate
    if configured:
        logger.warning("Font %s not found; falling back to system fonts", configured)
    return None


@lru_cache(maxsize=32)
def _font(size: int) -> ImageFont.FreeTypeFont:
    path = find_font_path()
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as e:
            logger.warning("Could not load font %s: %s", path, e)
    logger.warning("No Unicode TrueType font available; non-Latin text may not render")
    return ImageFont.load_default(size=size)


_HEADING_SIZES = {1: 30, 2: 24, 3: 20}
_BASE_SIZE = 16
_SMALL_SIZE = 12
_CODE_SIZE = 14


def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: float) -> List[str]:
    """Greedy word wrap; words wider than the line are broken by character."""
    lines: List[str] = []
    for paragraph in text.split("\n"):
        current = ""
        for word in re.split(r"(\s+)", paragraph):
            if not word:
                continue
            candidate = current + word
            if draw.textlength(candidate, font=font) <= max_width:
                current = candidate
                continue
            if current.strip():
                lines.append(current.rstrip())
            current = "" if word.isspace() else word
            while current and draw.textlength(current, font=font) > max_width:
                cut = len(current)
                while cut > 1 and draw.textlength(current[:cut], font=font) > max_width:
                    cut -= 1
                lines.append(current[:cut])
                current = current[cut:]
        lines.append(current.rstrip())
    return lines


Op = Tuple


class _Layout:
    def __init__(self, container: RenderContainer, scale: int):
        self.c = container
        self.s = scale
        self.theme = container.theme
        self.left = container.padding * scale
        self.right = (container.padding + container.width) * scale
        self.y = container.padding * scale
        self.ops: List[Op] = []
        self._draw = ImageDraw.Draw(Image.new("RGB", (1, 1)))

    def px(self, value: float) -> int:
        return int(round(value * self.s))

    def text_lines(self, text, size, fill, indent=0, bold=False, align="left", max_width=None):
        font = _font(self.px(size))
        width = max_width if max_width is not None else (self.right - self.left - indent)
        line_height = self.px(size * 1.5)
        for line in _wrap(self._draw, text, font, width):
            x = self.left + indent
            if align == "center":
                line_width = self._draw.textlength(line, font=font)
                x = self.left + (self.right - self.left - line_width) / 2
            self.ops.append(("text", (x, self.y), line, font, fill, bold))
            self.y += line_height

    def block(self, block: Block, first: bool) -> None:
        t = self.theme
        if block.kind == "heading":
            if not first:
                self.y += self.px(24)
            size = _HEADING_SIZES.get(block.level, 18)
            self.text_lines(block.text, size, t.heading, bold=block.level <= 2)
            self.y += self.px(8)
        elif block.kind == "paragraph":
            self.text_lines(block.text, _BASE_SIZE, t.foreground)
            self.y += self.px(12)
        elif block.kind in ("bullet", "number"):
            indent = self.px(24 * (block.level + 1))
            marker = "•" if block.kind == "bullet" else f"{block.number}."
            marker_font = _font(self.px(_BASE_SIZE))
            marker_width = self._draw.textlength(marker, font=marker_font)
            marker_x = self.left + indent - self.px(6) - marker_width
            self.ops.append(("text", (marker_x, self.y), marker, marker_font, t.foreground, False))
            self.text_lines(block.text, _BASE_SIZE, t.foreground, indent=indent)
            self.y += self.px(4)
        elif block.kind == "quote":
            top = self.y
            self.text_lines(block.text, _BASE_SIZE, t.muted, indent=self.px(16))
            self.ops.append(("rect", (self.left, top, self.left + self.px(4), self.y), t.accent))
            self.y += self.px(12)
        elif block.kind == "codeblock":
            pad = self.px(12)
            top = self.y
            self.y += pad
            index = len(self.ops)
            inner = self.right - self.left - 2 * pad
            self.text_lines(block.text, _CODE_SIZE, t.foreground, indent=pad, max_width=inner)
            self.y += pad
            box = (self.left, top, self.right, self.y)
            self.ops.insert(index, ("rect", box, t.code_background))
            self.y += self.px(12)
        elif block.kind == "table":
            self.table(block.rows)
            self.y += self.px(12)
        elif block.kind == "rule":
            self.y += self.px(12)
            self.ops.append(("line", (self.left, self.y, self.right, self.y), t.rule, self.px(1)))
            self.y += self.px(12)
        elif block.kind == "blank":
            self.y += self.px(8)
        elif block.kind == "header":
            self.text_lines(block.text, _SMALL_SIZE, t.muted)
            self.y += self.px(10)
            self.ops.append(("line", (self.left, self.y, self.right, self.y), t.muted, self.px(1)))
            self.y += self.px(20)
        elif block.kind == "footer":
            self.y += self.px(20)
            self.ops.append(("line", (self.left, self.y, self.right, self.y), t.muted, self.px(1)))
            self.y += self.px(10)
            self.text_lines(block.text, _SMALL_SIZE, t.muted, align="center")

    def table(self, rows: List[List[str]]) -> None:
        columns = max(len(r) for r in rows)
        if columns == 0:
            return
        t = self.theme
        pad = self.px(8)
        col_width = (self.right - self.left) / columns
        font = _font(self.px(_CODE_SIZE))
        line_height = self.px(_CODE_SIZE * 1.5)
        top = self.y
        for index, row in enumerate(rows):
            wrapped = [
                _wrap(self._draw, cell, font, col_width - 2 * pad) for cell in row
            ] + [[""]] * (columns - len(row))
            height = max(len(lines) for lines in wrapped) * line_height + 2 * pad
            if index == 0:
                box = (self.left, self.y, self.right, self.y + height)
                self.ops.append(("rect", box, t.code_background))
            for col, lines in enumerate(wrapped):
                x = self.left + col * col_width + pad
                for n, line in enumerate(lines):
                    xy = (x, self.y + pad + n * line_height)
                    self.ops.append(("text", xy, line, font, t.foreground, index == 0))
            self.y += height
            self.ops.append(("line", (self.left, self.y, self.right, self.y), t.rule, self.px(1)))
        for col in range(columns + 1):
            x = self.left + col * col_width
            self.ops.append(("line", (x, top, x, self.y), t.rule, self.px(1)))

    def run(self) -> List[Op]:
        for index, block in enumerate(self.c.blocks):
            self.block(block, first=index == 0)
        self.y += self.c.padding * self.s
        return self.ops


def rasterize(container: RenderContainer, scale: int = 2) -> Image.Image:
    """Paint the container into an RGB image at ``scale`` pixel density."""
    layout = _Layout(container, scale)
    ops = layout.run()
    width = container.outer_width * scale
    height = max(int(layout.y), 1)
    image = Image.new("RGB", (width, height), container.theme.background)
    draw = ImageDraw.Draw(image)
    for op in ops:
        if op[0] == "text":
            _, xy, text, font, fill, bold = op
            stroke = 1 if bold else 0
            draw.text(xy, text, font=font, fill=fill, stroke_width=stroke, stroke_fill=fill)
        elif op[0] == "rect":
            _, box, fill = op
            draw.rectangle(box, fill=fill)
        elif op[0] == "line":
            _, coords, fill, line_width = op
            draw.line(coords, fill=fill, width=max(line_width, 1))
    return image
