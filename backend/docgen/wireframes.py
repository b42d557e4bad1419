from __future__ import annotations

import io
import re
from typing import Any

from PIL import Image, UnidentifiedImageError

from .logging_utils import get_logger
from .uploads import decode_data_uri, encode_data_uri

log = get_logger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9_]+")


class WireframeError(RuntimeError):
    pass


def screen_slug(screen_name: str) -> str:
    slug = re.sub(r"\s+", "_", str(screen_name or "").strip()).lower()
    return _SLUG_RE.sub("", slug) or "screen"


def screen_filename(screen_name: str, index: int, *, kind: str = "image") -> str:
    suffix = "wireframe.png" if kind == "image" else "desc.txt"
    return f"{screen_slug(screen_name)}_{index}_{suffix}"


def get_screen(screens: list[dict[str, Any]], number: int) -> dict[str, Any]:
    """Screens are numbered from 1 in URLs and file names."""
    if number < 1 or number > len(screens):
        raise WireframeError(f"Screen {number} does not exist; this result has {len(screens)} screen(s).")
    return screens[number - 1]


def screen_png(image_uri: str) -> bytes:
    try:
        mime, data = decode_data_uri(image_uri)
    except ValueError as e:
        raise WireframeError(f"Stored wireframe image is not a data URI: {e}") from e
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, UnidentifiedImageError) as e:
        raise WireframeError(f"Stored wireframe image could not be decoded: {e}") from e
    if mime == "image/png" and img.format == "PNG":
        return data
    buf = io.BytesIO()
    img.convert("RGBA" if "A" in img.getbands() else "RGB").save(buf, format="PNG")
    return buf.getvalue()


def normalize_image_uri(image_uri: str) -> str:
    """Re-encode any generated image as PNG so every export path can embed it."""
    return encode_data_uri(screen_png(image_uri), "image/png")


def screen_text(screen: dict[str, Any]) -> str:
    name = str(screen.get("screenName") or "").strip()
    description = str(screen.get("description") or "").strip()
    return f"{name}\n\n{description}\n"


def wireframes_markdown(title: str, screens: list[dict[str, Any]], *, style: str = "") -> str:
    parts = [f"# {title} - Wireframes", ""]
    if style:
        parts += [f"Style: {style}", ""]
    for number, screen in enumerate(screens, start=1):
        name = str(screen.get("screenName") or f"Screen {number}").strip()
        parts += [f"## {number}. {name}", ""]
        image = str(screen.get("image") or "")
        if image:
            parts += [f"![{name}]({image})", ""]
        description = str(screen.get("description") or "").strip()
        if description:
            parts += [description, ""]
    return "\n".join(parts)
