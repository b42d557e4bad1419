from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from fpdf import FPDF
from PIL import Image, UnidentifiedImageError

from .logging_utils import get_logger
from .markdown_tokens import lex_with_meta
from .pdf_layout import (
    DotOp,
    ImageOp,
    LineOp,
    PageLayout,
    RectOp,
    RenderedDocument,
    TextOp,
    TextShaper,
    layout_blocks,
    load_image,
    register_fonts,
)

log = get_logger(__name__)

_FILENAME_RE = re.compile(r"[^A-Za-z0-9]+")
_BRANDED_TOP_MARGIN = 24.0
_BRANDED_BOTTOM_MARGIN = 18.0
_HEADER_SIZE = 8
_WATERMARK_SIZE = 60


class ExportError(RuntimeError):
    pass


@dataclass
class Branding:
    header_left: str = ""
    header_right: str = ""
    footer: str = ""
    page_numbers: bool = True
    logo_path: str = ""
    watermark: str = ""

    @classmethod
    def from_settings(cls, data: dict[str, object] | None) -> "Branding":
        data = data or {}
        return cls(
            header_left=str(data.get("header_left") or ""),
            header_right=str(data.get("header_right") or ""),
            footer=str(data.get("footer") or ""),
            page_numbers=bool(data.get("page_numbers", True)),
            logo_path=str(data.get("logo_path") or ""),
            watermark=str(data.get("watermark") or ""),
        )

    @property
    def has_header(self) -> bool:
        return bool(self.header_left or self.header_right or self.logo_path)

    @property
    def has_footer(self) -> bool:
        return bool(self.footer or self.page_numbers)


def apply_front_matter(branding: Branding, meta: dict[str, str]) -> Branding:
    overrides = {key: meta[key].strip() for key in ("header_left", "header_right", "watermark") if meta.get(key)}
    return replace(branding, **overrides) if overrides else branding


@dataclass
class PreparedDocument:
    title: str
    document: RenderedDocument
    pdf: FPDF
    shaper: TextShaper
    layout: PageLayout
    branding: Branding = field(default_factory=Branding)


def prepare_document(
    markdown: str,
    *,
    title: str,
    branding: Branding | None = None,
    asset_root: Path | None = None,
) -> PreparedDocument:
    """Lex and lay out ``markdown``; nothing is drawn on the canvas yet."""
    src = str(markdown or "")
    if not src.strip():
        raise ExportError("Nothing to export: the document is empty.")
    blocks, meta = lex_with_meta(src)
    if not blocks:
        raise ExportError("Nothing to export: the document has no printable content.")

    branding = apply_front_matter(branding or Branding(), meta)
    pdf = FPDF(format="A4", unit="mm")
    shaper = TextShaper(pdf, register_fonts(pdf))
    layout = PageLayout(
        page_width=pdf.w,
        page_height=pdf.h,
        margin_top=_BRANDED_TOP_MARGIN if branding.has_header else 15.0,
        margin_bottom=_BRANDED_BOTTOM_MARGIN if branding.has_footer else 15.0,
    )
    document = layout_blocks(blocks, shaper, layout=layout, asset_root=asset_root)
    return PreparedDocument(
        title=title, document=document, pdf=pdf, shaper=shaper, layout=layout, branding=branding
    )


def _load_logo(path: str) -> Image.Image | None:
    raw = str(path or "").strip()
    if not raw:
        return None
    if raw.startswith("data:"):
        return load_image(raw)
    try:
        img = Image.open(Path(raw))
        img.load()
    except (OSError, UnidentifiedImageError) as e:
        log.warning("Logo could not be loaded from %s: %s", raw, e)
        return None
    return img


def _fit_text(shaper: TextShaper, text: str, max_width: float, size: int) -> str:
    safe = shaper.sanitize(text)
    if not safe or shaper.width(safe, size) <= max_width:
        return safe
    for i in range(len(safe), 0, -1):
        candidate = f"{safe[:i].rstrip()}..."
        if shaper.width(candidate, size) <= max_width:
            return candidate
    return safe[:1]


def _baseline(op: TextOp) -> float:
    # Text ops are positioned by the top of their line box; fpdf draws on the baseline.
    size_mm = op.size * 25.4 / 72
    return op.y + (op.height - size_mm) / 2 + size_mm * 0.8


def _draw(pdf: FPDF, shaper: TextShaper, op: object) -> None:
    if isinstance(op, TextOp):
        face, style = shaper.face(op.style, op.mono)
        pdf.set_font(face, style, op.size)
        pdf.set_text_color(*op.color)
        pdf.text(op.x, _baseline(op), op.text)
        pdf.set_text_color(0, 0, 0)
    elif isinstance(op, RectOp):
        style = ""
        if op.fill is not None:
            pdf.set_fill_color(*op.fill)
            style += "F"
        if op.border is not None:
            pdf.set_draw_color(*op.border)
            pdf.set_line_width(0.2)
            style = "D" + style
        if style:
            pdf.rect(op.x, op.y, op.w, op.h, style=style)
    elif isinstance(op, LineOp):
        pdf.set_draw_color(*op.color)
        pdf.set_line_width(op.width)
        pdf.line(op.x1, op.y1, op.x2, op.y2)
    elif isinstance(op, DotOp):
        pdf.set_fill_color(0, 0, 0)
        pdf.rect(op.x - op.r, op.y - op.r, op.r * 2, op.r * 2, style="F")
    elif isinstance(op, ImageOp):
        pdf.image(op.image, x=op.x, y=op.y, w=op.w, h=op.h)
    else:
        raise TypeError(f"Unknown drawing instruction: {type(op).__name__}")


def write_pdf(prepared: PreparedDocument) -> bytes:
    """Replay the laid-out pages onto the canvas and serialize them."""
    pdf = prepared.pdf
    shaper = prepared.shaper
    layout = prepared.layout
    branding = prepared.branding
    document = prepared.document
    if document.frozen:
        raise ExportError("Document has already been exported.")
    if not any(page.ops for page in document.pages):
        raise ExportError("Nothing to export: the document has no printable content.")

    pdf.alias_nb_pages()
    pdf.set_margins(layout.margin_left, layout.margin_top, layout.margin_right)
    pdf.set_auto_page_break(auto=False)
    pdf.set_title(shaper.sanitize(prepared.title))
    pdf.set_creator("DocGen Studio")

    content_width = layout.content_width
    half_width = content_width / 2.0
    logo = _load_logo(branding.logo_path)
    if branding.logo_path and logo is None:
        log.warning("Using a placeholder for the logo")

    def header(self: FPDF) -> None:
        if branding.watermark:
            face, style = shaper.face("B")
            self.set_font(face, style, _WATERMARK_SIZE)
            self.set_text_color(225, 225, 225)
            text = shaper.sanitize(branding.watermark)
            width = self.get_string_width(text)
            cx, cy = self.w / 2, self.h / 2
            with self.rotation(45, x=cx, y=cy):
                self.text(cx - width / 2, cy, text)
            self.set_text_color(0, 0, 0)
        if not branding.has_header:
            return
        left_x = self.l_margin
        if branding.logo_path:
            if logo is not None:
                height = 10.0
                width = height * logo.width / max(logo.height, 1)
                self.image(logo, x=left_x, y=7, w=width, h=height)
            else:
                width = 18.0
                self.set_draw_color(180, 180, 180)
                self.rect(left_x, 7, width, 10, style="D")
                face, _ = shaper.face()
                self.set_font(face, "", 7)
                self.set_text_color(130, 130, 130)
                self.text(left_x + 3, 13, "LOGO")
            left_x += width + 3
        face, _ = shaper.face()
        self.set_text_color(110, 110, 110)
        self.set_font(face, "", _HEADER_SIZE)
        left_width = self.l_margin + half_width - left_x
        self.set_xy(left_x, 9)
        self.cell(left_width, 5, _fit_text(shaper, branding.header_left, left_width - 2, _HEADER_SIZE), align="L")
        self.set_xy(self.l_margin + half_width, 9)
        self.set_font(face, "", _HEADER_SIZE)
        self.cell(half_width, 5, _fit_text(shaper, branding.header_right, half_width - 2, _HEADER_SIZE), align="R")
        self.set_text_color(0, 0, 0)

    def footer(self: FPDF) -> None:
        if not branding.has_footer:
            return
        face, _ = shaper.face()
        self.set_text_color(110, 110, 110)
        self.set_font(face, "", _HEADER_SIZE)
        self.set_xy(self.l_margin, self.h - 12)
        self.cell(half_width, 6, _fit_text(shaper, branding.footer, half_width - 2, _HEADER_SIZE), align="L")
        if branding.page_numbers:
            self.set_font(face, "", _HEADER_SIZE)
            self.set_xy(self.l_margin + half_width, self.h - 12)
            self.cell(half_width, 6, f"Page {self.page_no()} of {{nb}}", align="R")
        self.set_text_color(0, 0, 0)

    pdf.header = header.__get__(pdf, FPDF)
    pdf.footer = footer.__get__(pdf, FPDF)

    for page in document.pages:
        pdf.add_page()
        for op in page.ops:
            _draw(pdf, shaper, op)

    document.freeze()
    output = pdf.output()
    if isinstance(output, (bytes, bytearray)):
        return bytes(output)
    return str(output).encode("latin-1", "replace")


def render_markdown_to_pdf(
    markdown: str,
    *,
    title: str,
    branding: Branding | None = None,
    asset_root: Path | None = None,
) -> bytes:
    prepared = prepare_document(markdown, title=title, branding=branding, asset_root=asset_root)
    log.info("Exporting %r: %d page(s)", title, len(prepared.document.pages))
    return write_pdf(prepared)


def export_markdown(markdown: str) -> str:
    text = str(markdown or "").replace("\r\n", "\n")
    text = text.strip("\n")
    if not text.strip():
        raise ExportError("Nothing to export: the document is empty.")
    return text + "\n"


def safe_filename(title: str, ext: str) -> str:
    stem = _FILENAME_RE.sub("_", str(title or "").strip()).strip("_").lower() or "document"
    return f"{stem[:80]}.{ext.lstrip('.')}"
