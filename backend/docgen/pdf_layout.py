from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Union

from fpdf import FPDF
from PIL import Image, UnidentifiedImageError

from .config import FONT_DIR
from .logging_utils import get_logger
from .uploads import decode_data_uri
from .markdown_tokens import (
    BLOCK_TYPES,
    Block,
    Callout,
    CodeBlock,
    Heading,
    ImageBlock,
    ListBlock,
    Paragraph,
    Rule,
    Space,
    Table,
)

log = get_logger(__name__)

RGB = tuple[int, int, int]

BODY_SIZE = 12
CODE_SIZE = 9
CALLOUT_SIZE = 11
TABLE_SIZE = 10
TABLE_MIN_SIZE = 7
LINE_FACTOR = 0.45
HEADING_GAP = 5.0
PARAGRAPH_GAP = 4.0
LIST_GAP_BEFORE = 2.0
LIST_GAP_AFTER = 3.0
LIST_INDENT = 7.0
MARKER_GAP = 5.0
SPACE_HEIGHT = 5.0
RULE_HEIGHT = 10.0
RULE_ADVANCE = 7.0
TABLE_PADDING = 2.0
TABLE_GAP_AFTER = 10.0
# A table column is never narrower than the widest of these glyphs.
WIDE_GLYPHS = ("W", "M", "@", "\u00c6")
HEADER_FILL: RGB = (230, 230, 230)
HEADER_TEXT: RGB = (20, 20, 20)
GRID_COLOR: RGB = (200, 200, 200)
PLACEHOLDER_HEIGHT = 20.0

_CUSTOM_FONTS = {
    "body": {
        "family": "DejaVuSans",
        "files": {
            "": "DejaVuSans.ttf",
            "B": "DejaVuSans-Bold.ttf",
            "I": "DejaVuSans-Oblique.ttf",
            "BI": "DejaVuSans-BoldOblique.ttf",
        },
    },
    "mono": {
        "family": "DejaVuSansMono",
        "files": {
            "": "DejaVuSansMono.ttf",
            "B": "DejaVuSansMono-Bold.ttf",
        },
    },
}
_ASCII_REPLACEMENTS = {
    "\u00a0": " ",
    "\u2007": " ",
    "\u2009": " ",
    "\u200b": "",
    "\u2010": "-",
    "\u2011": "-",
    "\u2012": "-",
    "\u2013": "-",
    "\u2014": "--",
    "\u2015": "--",
    "\u2212": "-",
    "\u2026": "...",
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": "\"",
    "\u201d": "\"",
    "\u2022": "*",
    "\u2190": "<-",
    "\u2192": "->",
    "\u2194": "<->",
    "\u21d0": "<=",
    "\u21d2": "=>",
    "\u21d4": "<=>",
    "\u2713": "v",
    "\u2714": "v",
    "\u2717": "x",
    "\u2718": "x",
}


def line_height(size: float) -> float:
    return size * LINE_FACTOR


def heading_size(depth: int) -> int:
    return max(10, min(20, 22 - 2 * int(depth)))


def _normalize_ascii(text: str) -> str:
    out = text
    for key, val in _ASCII_REPLACEMENTS.items():
        out = out.replace(key, val)
    return out


def _sanitize_pdf_text(text: str, *, allow_unicode: bool) -> str:
    if allow_unicode:
        return text
    cleaned = _normalize_ascii(text)
    return cleaned.encode("latin-1", "replace").decode("latin-1")


@dataclass(frozen=True)
class FontSet:
    body: str = "Helvetica"
    mono: str = "Courier"
    body_unicode: bool = False
    mono_unicode: bool = False
    body_styles: frozenset[str] = frozenset({"", "B", "I", "BI"})


def register_fonts(pdf: FPDF, font_dir: Path = FONT_DIR) -> FontSet:
    """Use bundled TTF fonts when present so non-Latin-1 text survives."""
    if not font_dir.exists():
        return FontSet()
    registered: dict[str, tuple[str, frozenset[str]]] = {}
    for key, meta in _CUSTOM_FONTS.items():
        family = str(meta["family"])
        files: dict[str, str] = meta["files"]  # type: ignore[assignment]
        if not (font_dir / files[""]).exists():
            continue
        styles: set[str] = set()
        for style, filename in files.items():
            path = font_dir / filename
            if path.exists():
                pdf.add_font(family, style=style, fname=str(path))
                styles.add(style)
        registered[key] = (family, frozenset(styles))
    body = registered.get("body")
    mono = registered.get("mono")
    return FontSet(
        body=body[0] if body else "Helvetica",
        mono=mono[0] if mono else "Courier",
        body_unicode=bool(body),
        mono_unicode=bool(mono),
        body_styles=body[1] if body else frozenset({"", "B", "I", "BI"}),
    )


class TextShaper:
    """Measures and wraps text with the PDF library's own font metrics."""

    def __init__(self, pdf: FPDF, fonts: FontSet | None = None) -> None:
        self.pdf = pdf
        self.fonts = fonts or FontSet()

    def _face(self, style: str, mono: bool) -> tuple[str, str]:
        if mono:
            return self.fonts.mono, ""
        if style not in self.fonts.body_styles:
            style = ""
        return self.fonts.body, style

    def face(self, style: str = "", mono: bool = False) -> tuple[str, str]:
        return self._face(style, mono)

    def sanitize(self, text: str, *, mono: bool = False) -> str:
        allow = self.fonts.mono_unicode if mono else self.fonts.body_unicode
        return _sanitize_pdf_text(str(text or ""), allow_unicode=allow)

    def width(self, text: str, size: float, style: str = "", mono: bool = False) -> float:
        face, style = self._face(style, mono)
        self.pdf.set_font(face, style, size)
        return self.pdf.get_string_width(text)

    def _break_word(self, word: str, size: float, max_width: float, style: str, mono: bool) -> list[str]:
        pieces: list[str] = []
        current = ""
        for ch in word:
            candidate = current + ch
            if current and self.width(candidate, size, style, mono) > max_width:
                pieces.append(current)
                current = ch
            else:
                current = candidate
        if current:
            pieces.append(current)
        return pieces

    def wrap(self, text: str, size: float, max_width: float, style: str = "", mono: bool = False) -> list[str]:
        """Greedy word wrap; words wider than ``max_width`` are split by character."""
        clean = self.sanitize(text, mono=mono)
        if not clean.strip():
            return []
        lines: list[str] = []
        for para in clean.split("\n"):
            current = ""
            for word in para.split():
                candidate = f"{current} {word}" if current else word
                if self.width(candidate, size, style, mono) <= max_width:
                    current = candidate
                    continue
                if current:
                    lines.append(current)
                    current = ""
                if self.width(word, size, style, mono) <= max_width:
                    current = word
                    continue
                pieces = self._break_word(word, size, max_width, style, mono)
                lines.extend(pieces[:-1])
                current = pieces[-1]
            if current:
                lines.append(current)
        return lines

    def wrap_verbatim(self, text: str, size: float, max_width: float) -> list[str]:
        """Character wrap that keeps indentation, for code."""
        clean = self.sanitize(text, mono=True).expandtabs(4)
        lines: list[str] = []
        for raw in clean.split("\n"):
            if not raw.strip():
                lines.append("")
                continue
            lines.extend(self._break_word(raw.rstrip(), size, max_width, "", True))
        while lines and not lines[-1]:
            lines.pop()
        return lines


class PageCursor:
    """Vertical write position; the only thing allowed to start a new page."""

    def __init__(
        self,
        *,
        page_height: float,
        top_margin: float,
        bottom_margin: float,
        on_new_page: Callable[[int], None] | None = None,
    ) -> None:
        self.page_height = page_height
        self.top_margin = top_margin
        self.bottom_margin = bottom_margin
        self.page = 1
        self.y = top_margin
        self._on_new_page = on_new_page

    @property
    def limit(self) -> float:
        return self.page_height - self.bottom_margin

    @property
    def printable_height(self) -> float:
        return self.limit - self.top_margin

    @property
    def remaining(self) -> float:
        return self.limit - self.y

    def new_page(self) -> None:
        self.page += 1
        self.y = self.top_margin
        if self._on_new_page is not None:
            self._on_new_page(self.page)

    def reserve(self, height: float) -> float:
        if self.y + height > self.limit:
            self.new_page()
        return self.y

    def advance(self, dy: float) -> None:
        self.y += dy


@dataclass(frozen=True)
class TextOp:
    x: float
    y: float
    text: str
    size: float
    style: str = ""
    mono: bool = False
    color: RGB = (0, 0, 0)
    role: str = "body"

    @property
    def height(self) -> float:
        return line_height(self.size)


@dataclass(frozen=True)
class LineOp:
    x1: float
    y1: float
    x2: float
    y2: float
    width: float = 0.3
    color: RGB = (120, 120, 120)


@dataclass(frozen=True)
class RectOp:
    x: float
    y: float
    w: float
    h: float
    fill: RGB | None = None
    border: RGB | None = None
    role: str = ""


@dataclass(frozen=True)
class DotOp:
    x: float
    y: float
    r: float
    role: str = "marker"


@dataclass(frozen=True)
class ImageOp:
    x: float
    y: float
    w: float
    h: float
    image: Image.Image = field(compare=False)


DrawOp = Union[TextOp, LineOp, RectOp, DotOp, ImageOp]


@dataclass
class Page:
    number: int
    ops: list[DrawOp] = field(default_factory=list)


class RenderedDocument:
    def __init__(self, *, page_width: float, page_height: float) -> None:
        self.page_width = page_width
        self.page_height = page_height
        self.pages: list[Page] = [Page(number=1)]
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add_page(self, number: int | None = None) -> None:
        self._check_open()
        self.pages.append(Page(number=number or len(self.pages) + 1))

    def add(self, op: DrawOp) -> None:
        self._check_open()
        self.pages[-1].ops.append(op)

    def freeze(self) -> None:
        self._frozen = True

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("Rendered document is frozen; it has already been exported.")

    def ops(self, kind: type | None = None, role: str | None = None) -> list[DrawOp]:
        out: list[DrawOp] = []
        for page in self.pages:
            for op in page.ops:
                if kind is not None and not isinstance(op, kind):
                    continue
                if role is not None and getattr(op, "role", None) != role:
                    continue
                out.append(op)
        return out


@dataclass(frozen=True)
class PageLayout:
    page_width: float = 210.0
    page_height: float = 297.0
    margin_left: float = 15.0
    margin_right: float = 15.0
    margin_top: float = 15.0
    margin_bottom: float = 15.0

    @property
    def content_width(self) -> float:
        return self.page_width - self.margin_left - self.margin_right


def load_image(src: str, *, asset_root: Path | None = None) -> Image.Image | None:
    """Data URIs, or files under ``asset_root``; remote URLs are never fetched."""
    raw = str(src or "").strip()
    if not raw:
        return None
    try:
        if raw.startswith("data:"):
            _, data = decode_data_uri(raw)
            img = Image.open(io.BytesIO(data))
        elif asset_root is not None and not raw.startswith(("http://", "https://")):
            base = asset_root.resolve()
            candidate = (base / raw.lstrip("/")).resolve()
            if not str(candidate).startswith(str(base)) or not candidate.is_file():
                return None
            img = Image.open(candidate)
        else:
            return None
        img.load()
    except (OSError, ValueError, UnidentifiedImageError) as e:
        log.warning("Image could not be loaded (%s): %s", raw[:60], e)
        return None
    return img


class BlockRenderer:
    """Turns block tokens into positioned drawing instructions."""

    def __init__(
        self,
        shaper: TextShaper,
        cursor: PageCursor,
        document: RenderedDocument,
        layout: PageLayout,
        *,
        asset_root: Path | None = None,
    ) -> None:
        self.shaper = shaper
        self.cursor = cursor
        self.document = document
        self.layout = layout
        self.asset_root = asset_root
        self._handlers: dict[type, Callable[[Block], None]] = {
            Heading: self._render_heading,  # type: ignore[dict-item]
            Paragraph: self._render_paragraph,  # type: ignore[dict-item]
            ListBlock: self._render_list,  # type: ignore[dict-item]
            Table: self._render_table,  # type: ignore[dict-item]
            Rule: self._render_rule,  # type: ignore[dict-item]
            Space: self._render_space,  # type: ignore[dict-item]
            CodeBlock: self._render_code,  # type: ignore[dict-item]
            Callout: self._render_callout,  # type: ignore[dict-item]
            ImageBlock: self._render_image,  # type: ignore[dict-item]
        }
        missing = [t.__name__ for t in BLOCK_TYPES if t not in self._handlers]
        if missing:
            raise TypeError(f"BlockRenderer has no handler for: {', '.join(missing)}")

    @property
    def margin(self) -> float:
        return self.layout.margin_left

    @property
    def content_width(self) -> float:
        return self.layout.content_width

    def handled_types(self) -> set[type]:
        return set(self._handlers)

    def render(self, block: Block) -> None:
        handler = self._handlers.get(type(block))
        if handler is None:
            raise TypeError(f"Unhandled block kind: {type(block).__name__}")
        handler(block)

    def render_all(self, blocks: list[Block]) -> None:
        for block in blocks:
            self.render(block)

    def _draw_lines(
        self,
        lines: list[str],
        *,
        x: float,
        size: float,
        style: str = "",
        role: str = "body",
        color: RGB = (0, 0, 0),
        keep_together: bool = False,
        keep_extra: float = 0.0,
    ) -> None:
        lh = line_height(size)
        if keep_together:
            block_h = lh * len(lines) + keep_extra
            if block_h <= self.cursor.printable_height:
                self.cursor.reserve(block_h)
        for line in lines:
            y = self.cursor.reserve(lh)
            self.document.add(TextOp(x=x, y=y, text=line, size=size, style=style, color=color, role=role))
            self.cursor.advance(lh)

    def _render_heading(self, block: Heading) -> None:
        size = heading_size(block.depth)
        lines = self.shaper.wrap(block.text, size, self.content_width, "B")
        if not lines:
            return
        self._draw_lines(
            lines,
            x=self.margin,
            size=size,
            style="B",
            role=f"h{block.depth}",
            keep_together=True,
            keep_extra=line_height(BODY_SIZE),
        )
        self.cursor.advance(HEADING_GAP)

    def _render_paragraph(self, block: Paragraph) -> None:
        lines = self.shaper.wrap(block.text, BODY_SIZE, self.content_width)
        if not lines:
            return
        self._draw_lines(lines, x=self.margin, size=BODY_SIZE)
        self.cursor.advance(PARAGRAPH_GAP)

    def _render_list(self, block: ListBlock, depth: int = 1) -> None:
        self.cursor.advance(LIST_GAP_BEFORE)
        lh = line_height(BODY_SIZE)
        indent = (depth - 1) * LIST_INDENT
        marker_x = self.margin + indent
        text_x = marker_x + MARKER_GAP
        width = self.content_width - indent - 6
        counter = block.start
        for item in block.items:
            label = f"{counter}." if block.ordered else ""
            if block.ordered:
                counter += 1
            lines = self.shaper.wrap(item.text, BODY_SIZE, width)
            for idx, line in enumerate(lines):
                y = self.cursor.reserve(lh)
                if idx == 0:
                    if label:
                        self.document.add(TextOp(x=marker_x, y=y, text=label, size=BODY_SIZE, role="marker"))
                    else:
                        self.document.add(DotOp(x=marker_x + 1.0, y=y + lh / 2, r=0.7))
                self.document.add(TextOp(x=text_x, y=y, text=line, size=BODY_SIZE, role="list"))
                self.cursor.advance(lh)
            for child in item.children:
                self._render_list(child, depth + 1)
                self.cursor.advance(-LIST_GAP_BEFORE)
        self.cursor.advance(LIST_GAP_AFTER)

    def _min_column_width(self, size: int) -> float:
        return max(self.shaper.width(ch, size, "B") for ch in WIDE_GLYPHS) + TABLE_PADDING * 2

    def _table_widths(self, rows: list[list[str]], cols: int, has_header: bool) -> tuple[int, list[float]]:
        content_width = self.content_width

        def compute(size: int) -> list[float] | None:
            widths = [0.0] * cols
            for r_index, row in enumerate(rows):
                style = "B" if has_header and r_index == 0 else ""
                for c_index in range(cols):
                    text = self.shaper.sanitize(row[c_index] if c_index < len(row) else "")
                    longest = max((self.shaper.width(w, size, style) for w in text.split()), default=0.0)
                    natural = max(self.shaper.width(text, size, style), 0.0)
                    # Long prose wraps anyway; cap so one cell cannot starve the rest.
                    natural = min(natural, max(longest, content_width / 2))
                    widths[c_index] = max(widths[c_index], natural + TABLE_PADDING * 2)
            total = sum(widths)
            if total <= 0:
                return [content_width / cols] * cols
            widths = [w * content_width / total for w in widths]
            if min(widths) < self._min_column_width(size):
                return None
            return widths

        size = TABLE_SIZE
        while size >= TABLE_MIN_SIZE:
            widths = compute(size)
            if widths:
                return size, widths
            size -= 1
        return TABLE_MIN_SIZE, [content_width / cols] * cols

    def _row_cells(self, row: list[str], widths: list[float], size: int, style: str) -> list[list[str]]:
        cells: list[list[str]] = []
        for c_index, width in enumerate(widths):
            text = row[c_index] if c_index < len(row) else ""
            cells.append(self.shaper.wrap(text, size, width - TABLE_PADDING * 2, style))
        return cells

    def _draw_row(
        self, cells: list[list[str]], widths: list[float], size: int, height: float, *, header: bool
    ) -> None:
        y = self.cursor.reserve(height)
        lh = line_height(size)
        x = self.margin
        for lines, width in zip(cells, widths):
            self.document.add(
                RectOp(
                    x=x,
                    y=y,
                    w=width,
                    h=height,
                    fill=HEADER_FILL if header else None,
                    border=GRID_COLOR,
                    role="table-header" if header else "table-cell",
                )
            )
            for i, line in enumerate(lines):
                self.document.add(
                    TextOp(
                        x=x + TABLE_PADDING,
                        y=y + TABLE_PADDING + i * lh,
                        text=line,
                        size=size,
                        style="B" if header else "",
                        color=HEADER_TEXT if header else (0, 0, 0),
                        role="table-header" if header else "table-cell",
                    )
                )
            x += width
        self.cursor.advance(height)

    def _render_table(self, block: Table) -> None:
        has_header = bool(block.header)
        all_rows = ([block.header] if has_header else []) + [list(r) for r in block.rows]
        cols = max((len(r) for r in all_rows), default=0)
        if cols == 0:
            return
        max_cols = max(1, int(self.content_width // self._min_column_width(TABLE_MIN_SIZE)))
        if cols > max_cols:
            log.info("Splitting a %d-column table into groups of %d columns", cols, max_cols)
            for start in range(0, cols, max_cols):
                end = start + max_cols
                self._render_table(
                    Table(header=block.header[start:end], rows=[list(r[start:end]) for r in block.rows])
                )
            return
        size, widths = self._table_widths(all_rows, cols, has_header)
        lh = line_height(size)

        def height_of(cells: list[list[str]]) -> float:
            return max(1, max((len(c) for c in cells), default=1)) * lh + TABLE_PADDING * 2

        header_cells = self._row_cells(block.header, widths, size, "B") if has_header else []
        header_h = height_of(header_cells) if has_header else 0.0
        max_row_h = self.cursor.printable_height - header_h
        max_lines = max(1, int((max_row_h - TABLE_PADDING * 2) // lh))

        body: list[tuple[list[list[str]], float]] = []
        for row in block.rows:
            cells = [c[:max_lines] for c in self._row_cells(row, widths, size, "")]
            body.append((cells, height_of(cells)))

        first_h = header_h + (body[0][1] if body else 0.0)
        self.cursor.reserve(first_h)
        if has_header:
            self._draw_row(header_cells, widths, size, header_h, header=True)
        for cells, height in body:
            page = self.cursor.page
            self.cursor.reserve(height)
            if has_header and self.cursor.page != page:
                self._draw_row(header_cells, widths, size, header_h, header=True)
            self._draw_row(cells, widths, size, height, header=False)
        self.cursor.advance(TABLE_GAP_AFTER)

    def _render_rule(self, block: Rule) -> None:
        y = self.cursor.reserve(RULE_HEIGHT)
        self.document.add(LineOp(x1=self.margin, y1=y + 2, x2=self.margin + self.content_width, y2=y + 2))
        self.cursor.advance(RULE_ADVANCE)

    def _render_space(self, block: Space) -> None:
        self.cursor.advance(SPACE_HEIGHT)

    def _render_code(self, block: CodeBlock) -> None:
        lines = self.shaper.wrap_verbatim(block.text, CODE_SIZE, self.content_width - 4)
        if not lines:
            return
        lh = line_height(CODE_SIZE) + 0.6
        self.cursor.advance(1)
        for line in lines:
            y = self.cursor.reserve(lh)
            self.document.add(RectOp(x=self.margin, y=y, w=self.content_width, h=lh, fill=(245, 245, 245), role="code"))
            if line:
                self.document.add(
                    TextOp(x=self.margin + 2, y=y + 0.3, text=line, size=CODE_SIZE, mono=True, role="code")
                )
            self.cursor.advance(lh)
        self.cursor.advance(2)

    def _render_callout(self, block: Callout) -> None:
        if block.kind == "warning" or block.kind == "caution":
            fill, stripe = (240, 220, 220), (216, 92, 92)
        elif block.kind in ("info", "note", "important"):
            fill, stripe = (220, 230, 245), (88, 155, 219)
        elif block.kind == "quote":
            fill, stripe = (245, 245, 245), (170, 170, 170)
        else:
            fill, stripe = (220, 240, 230), (63, 163, 124)
        padding_x = 6.0
        padding_y = 3.0
        text_width = self.content_width - padding_x * 2
        lh = line_height(CALLOUT_SIZE)
        title_lines = self.shaper.wrap(block.title, CALLOUT_SIZE, text_width, "B")
        body_lines = self.shaper.wrap(block.text, CALLOUT_SIZE, text_width)
        if not title_lines and not body_lines:
            return
        total_h = (len(title_lines) + len(body_lines)) * lh + padding_y * 2
        if total_h > self.cursor.printable_height:
            self._draw_lines(title_lines, x=self.margin, size=CALLOUT_SIZE, style="B", role="callout")
            self._draw_lines(body_lines, x=self.margin, size=CALLOUT_SIZE, role="callout")
            self.cursor.advance(PARAGRAPH_GAP)
            return
        y = self.cursor.reserve(total_h)
        self.document.add(RectOp(x=self.margin, y=y, w=self.content_width, h=total_h, fill=fill, role="callout"))
        self.document.add(RectOp(x=self.margin, y=y, w=3, h=total_h, fill=stripe, role="callout"))
        ty = y + padding_y
        for line in title_lines:
            self.document.add(
                TextOp(x=self.margin + padding_x, y=ty, text=line, size=CALLOUT_SIZE, style="B", role="callout")
            )
            ty += lh
        for line in body_lines:
            self.document.add(TextOp(x=self.margin + padding_x, y=ty, text=line, size=CALLOUT_SIZE, role="callout"))
            ty += lh
        self.cursor.advance(total_h + 2)

    def _render_image(self, block: ImageBlock) -> None:
        img = load_image(block.src, asset_root=self.asset_root)
        if img is None or img.width <= 0 or img.height <= 0:
            self.render_placeholder(block.alt or "image")
            return
        dpi = img.info.get("dpi")
        dpi_value = 96.0
        if isinstance(dpi, (tuple, list)) and dpi and dpi[0]:
            dpi_value = float(dpi[0])
        elif isinstance(dpi, (int, float)) and dpi:
            dpi_value = float(dpi)
        natural_width = (img.width / dpi_value) * 25.4
        width_mm = min(natural_width, self.content_width)
        height_mm = width_mm * (img.height / img.width)
        max_height = self.cursor.printable_height
        if height_mm > max_height:
            width_mm = width_mm * (max_height / height_mm)
            height_mm = max_height
        y = self.cursor.reserve(height_mm)
        x = self.margin + (self.content_width - width_mm) / 2
        self.document.add(ImageOp(x=x, y=y, w=width_mm, h=height_mm, image=img))
        self.cursor.advance(height_mm + 2)

    def render_placeholder(self, label: str) -> None:
        y = self.cursor.reserve(PLACEHOLDER_HEIGHT)
        self.document.add(
            RectOp(
                x=self.margin,
                y=y,
                w=self.content_width,
                h=PLACEHOLDER_HEIGHT,
                fill=(245, 245, 245),
                border=(180, 180, 180),
                role="placeholder",
            )
        )
        text = self.shaper.wrap(f"[image unavailable: {label}]", 10, self.content_width - 8)[:1]
        for line in text:
            self.document.add(
                TextOp(
                    x=self.margin + 4,
                    y=y + (PLACEHOLDER_HEIGHT - line_height(10)) / 2,
                    text=line,
                    size=10,
                    style="I",
                    color=(110, 110, 110),
                    role="placeholder",
                )
            )
        self.cursor.advance(PLACEHOLDER_HEIGHT + 2)


def layout_blocks(
    blocks: list[Block],
    shaper: TextShaper,
    *,
    layout: PageLayout | None = None,
    asset_root: Path | None = None,
) -> RenderedDocument:
    layout = layout or PageLayout()
    document = RenderedDocument(page_width=layout.page_width, page_height=layout.page_height)
    cursor = PageCursor(
        page_height=layout.page_height,
        top_margin=layout.margin_top,
        bottom_margin=layout.margin_bottom,
        on_new_page=document.add_page,
    )
    renderer = BlockRenderer(shaper, cursor, document, layout, asset_root=asset_root)
    renderer.render_all(blocks)
    return document
