from __future__ import annotations

import asyncio
import base64
import io
import re
import textwrap
from dataclasses import dataclass

import httpx
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from . import config
from .logging_utils import get_logger

log = get_logger(__name__)

DIAGRAM_KEYWORDS = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "stateDiagram",
    "stateDiagram-v2",
    "erDiagram",
    "journey",
    "gantt",
    "pie",
    "mindmap",
    "timeline",
    "gitGraph",
    "quadrantChart",
)
FLOW_DIRECTIONS = ("TD", "TB", "BT", "RL", "LR")
_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*\n(.*?)\n?\s*```\s*$", re.DOTALL)
_QUOTED_RE = re.compile(r'"[^"\n]*"')
_PAIRS = {"]": "[", "}": "{", ")": "("}
_HEADER_PAD = 24
_MARGIN = 24


class DiagramError(RuntimeError):
    pass


@dataclass
class DiagramImage:
    png: bytes
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def clean_mermaid(text: str) -> str:
    src = str(text or "").replace("\r\n", "\n").strip()
    m = _FENCE_RE.match(src)
    if m:
        src = m.group(1)
    # Models sometimes return the JSON-escaped form.
    if "\n" not in src and "\\n" in src:
        src = src.replace("\\n", "\n")
    return src.strip()


def _first_statement(syntax: str) -> str:
    for raw in syntax.splitlines():
        line = raw.strip()
        if not line or line.startswith("%%"):
            continue
        return line
    return ""


def validate_mermaid(syntax: str) -> str | None:
    """Return a human readable problem, or None when the syntax looks renderable."""
    src = clean_mermaid(syntax)
    if not src:
        return "Diagram is empty."
    first = _first_statement(src)
    if not first:
        return "Diagram has no statements."
    parts = first.split()
    keyword = parts[0].rstrip(";")
    if keyword not in DIAGRAM_KEYWORDS:
        return f"Unknown diagram type '{keyword}'. Expected one of: {', '.join(DIAGRAM_KEYWORDS)}."
    if keyword in ("graph", "flowchart") and len(parts) > 1:
        direction = parts[1].rstrip(";")
        if direction not in FLOW_DIRECTIONS:
            return f"Unknown flowchart direction '{direction}'."
    for number, raw in enumerate(src.splitlines(), start=1):
        line = _QUOTED_RE.sub("", raw)
        stack: list[str] = []
        for ch in line:
            if ch in "[{(":
                stack.append(ch)
            elif ch in _PAIRS:
                if not stack and ch == "]":
                    # asymmetric node shape: A>label]
                    continue
                if not stack or stack[-1] != _PAIRS[ch]:
                    return f"Unbalanced '{ch}' on line {number}."
                stack.pop()
        if stack:
            return f"Unclosed '{stack[-1]}' on line {number}."
    return None


def _encoded(syntax: str) -> str:
    return base64.urlsafe_b64encode(syntax.encode("utf-8")).decode("ascii")


def render_url(syntax: str, *, kind: str = "img", theme: str = "default", background: str = "white") -> str:
    if kind not in ("img", "svg"):
        raise ValueError(f"Unknown render kind: {kind}")
    url = f"{config.MERMAID_RENDER_URL}/{kind}/{_encoded(clean_mermaid(syntax))}?theme={theme}"
    if kind == "img":
        url += f"&type=png&bgColor=!{background}"
    return url


async def fetch_rendered(
    syntax: str,
    *,
    kind: str = "img",
    theme: str = "default",
    background: str = "white",
    timeout_s: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    url = render_url(syntax, kind=kind, theme=theme, background=background)
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport) as client:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise DiagramError(f"Diagram render timed out after {timeout_s:.1f}s.") from e
        except httpx.HTTPError as e:
            raise DiagramError(f"Diagram render failed ({type(e).__name__}): {e}") from e
    if not resp.content:
        raise DiagramError("Diagram renderer returned an empty response.")
    return resp.content


def _font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    font_path = config.FONT_DIR / "DejaVuSans.ttf"
    if font_path.exists():
        return ImageFont.truetype(str(font_path), size)
    return ImageFont.load_default(size=size)


def _png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def error_png(message: str, *, title: str = "", width: int = 800) -> bytes:
    """A plain PNG carrying the error text, used in place of a diagram."""
    font = _font(16)
    lines: list[str] = []
    if title:
        lines.append(title)
    lines.append("Diagram could not be rendered.")
    for para in str(message or "Unknown error").splitlines():
        lines.extend(textwrap.wrap(para, 80) or [""])
    height = _MARGIN * 2 + 24 * len(lines)
    img = Image.new("RGB", (width, height), (255, 245, 245))
    draw = ImageDraw.Draw(img)
    draw.rectangle([(4, 4), (width - 5, height - 5)], outline=(216, 92, 92), width=2)
    y = _MARGIN
    for line in lines:
        draw.text((_MARGIN, y), line, fill=(150, 30, 30), font=font)
        y += 24
    return _png_bytes(img)


def compose_with_header(diagram_png: bytes, *, title: str, organization: str = "", date: str = "") -> bytes:
    """Put a title / prepared-by / date header above the rendered diagram."""
    try:
        diagram = Image.open(io.BytesIO(diagram_png))
        diagram.load()
    except (OSError, UnidentifiedImageError) as e:
        raise DiagramError(f"Renderer returned an unreadable image: {e}") from e
    diagram = diagram.convert("RGB")

    title_font = _font(28)
    meta_font = _font(16)
    header_lines: list[tuple[str, ImageFont.ImageFont | ImageFont.FreeTypeFont, int]] = [(title, title_font, 40)]
    if organization:
        header_lines.append((f"Prepared by {organization}", meta_font, 24))
    if date:
        header_lines.append((f"Date: {date}", meta_font, 24))
    header_height = _HEADER_PAD + sum(h for _, _, h in header_lines) + _HEADER_PAD

    width = max(diagram.width + _MARGIN * 2, 600)
    height = header_height + diagram.height + _MARGIN
    canvas = Image.new("RGB", (width, height), (255, 255, 255))
    draw = ImageDraw.Draw(canvas)
    y = _HEADER_PAD
    for text, font, line_h in header_lines:
        x = max(_MARGIN, int((width - draw.textlength(text, font=font)) / 2))
        draw.text((x, y), text, fill=(20, 20, 20), font=font)
        y += line_h
    draw.line([(_MARGIN, header_height - 8), (width - _MARGIN, header_height - 8)], fill=(200, 200, 200), width=1)
    canvas.paste(diagram, ((width - diagram.width) // 2, header_height))
    return _png_bytes(canvas)


async def render_flowchart_png(
    syntax: str,
    *,
    title: str,
    organization: str = "",
    date: str = "",
    theme: str = "default",
    background: str = "white",
    timeout_s: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DiagramImage:
    """Never raises: invalid syntax or a failed render yields an error placeholder."""
    problem = validate_mermaid(syntax)
    if problem:
        log.warning("Invalid diagram syntax for %r: %s", title, problem)
        return DiagramImage(png=await asyncio.to_thread(error_png, problem, title=title), error=problem)
    try:
        raw = await fetch_rendered(
            syntax, kind="img", theme=theme, background=background, timeout_s=timeout_s, transport=transport
        )
        png = await asyncio.to_thread(compose_with_header, raw, title=title, organization=organization, date=date)
    except DiagramError as e:
        log.warning("Diagram render failed for %r: %s", title, e)
        return DiagramImage(png=await asyncio.to_thread(error_png, str(e), title=title), error=str(e))
    return DiagramImage(png=png)


async def render_flowchart_svg(
    syntax: str,
    *,
    theme: str = "default",
    timeout_s: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[str | None, str | None]:
    """(svg, error); exactly one of them is set."""
    problem = validate_mermaid(syntax)
    if problem:
        return None, problem
    try:
        raw = await fetch_rendered(syntax, kind="svg", theme=theme, timeout_s=timeout_s, transport=transport)
    except DiagramError as e:
        log.warning("Diagram preview failed: %s", e)
        return None, str(e)
    return raw.decode("utf-8", errors="replace"), None


def png_data_uri(png: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(png).decode('ascii')}"
