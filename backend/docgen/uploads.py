from __future__ import annotations

import base64
import binascii
import mimetypes
import re
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup
from markdownify import markdownify

from . import config
from .logging_utils import get_logger

log = get_logger(__name__)

ALLOWED_TYPES = ("text/plain", "text/markdown", "text/html", "application/pdf")
TEXT_TYPES = ("text/plain", "text/markdown", "text/html")
MAX_INLINE_CHARS = 60000

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[^;,]*?)*?);base64,(?P<data>.*)$", re.DOTALL
)
_EXTENSION_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".htm": "text/html",
    ".html": "text/html",
    ".pdf": "application/pdf",
}


class UploadError(RuntimeError):
    pass


class UploadTooLargeError(UploadError):
    pass


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    match = _DATA_URI_RE.match(str(uri or "").strip())
    if not match:
        raise ValueError("Not a base64 data URI")
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return (match.group("mime") or "application/octet-stream").lower(), data


def encode_data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def guess_mime(filename: str | None, declared: str | None = None) -> str:
    """Prefer the file extension; browsers often send octet-stream for .md files."""
    name = str(filename or "").lower()
    for ext, mime in _EXTENSION_TYPES.items():
        if name.endswith(ext):
            return mime
    declared = str(declared or "").split(";", 1)[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


def encode_upload(data: bytes, *, filename: str | None = None, content_type: str | None = None) -> str:
    if not data:
        raise UploadError("Uploaded file is empty.")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise UploadTooLargeError(
            f"Uploaded file is {len(data)} bytes; the limit is {config.MAX_UPLOAD_BYTES} bytes."
        )
    mime = guess_mime(filename, content_type)
    if mime not in ALLOWED_TYPES:
        raise UploadError(f"Unsupported file type '{mime}'. Allowed: {', '.join(ALLOWED_TYPES)}.")
    return encode_data_uri(data, mime)


def looks_like_html(text: str) -> bool:
    if "<" not in text or ">" not in text:
        return False
    soup = BeautifulSoup(text, "html.parser")
    return soup.find() is not None


def html_to_markdown(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head", "noscript"]):
        tag.decompose()
    md = markdownify(str(soup), heading_style="ATX", bullets="*")
    return re.sub(r"\n{3,}", "\n\n", md).strip()


@dataclass
class SourceMaterial:
    """An uploaded file, ready to go into a prompt."""

    mime: str
    text: str = ""
    attachment: dict[str, Any] | None = None


def prepare_source(uri: str | None) -> SourceMaterial | None:
    if not uri or not str(uri).strip():
        return None
    try:
        mime, data = decode_data_uri(uri)
    except ValueError as e:
        raise UploadError(f"uploaded_file is not a valid data URI: {e}") from e
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise UploadTooLargeError(
            f"Uploaded file is {len(data)} bytes; the limit is {config.MAX_UPLOAD_BYTES} bytes."
        )
    if mime not in ALLOWED_TYPES:
        raise UploadError(f"Unsupported file type '{mime}'. Allowed: {', '.join(ALLOWED_TYPES)}.")

    if mime == "application/pdf":
        return SourceMaterial(
            mime=mime,
            attachment={"type": "file", "file": {"filename": "source.pdf", "file_data": encode_data_uri(data, mime)}},
        )

    text = data.decode("utf-8", errors="replace").replace("\r\n", "\n")
    if mime == "text/html" or (text.lstrip().startswith("<") and looks_like_html(text)):
        text = html_to_markdown(text)
    text = text.strip()
    if len(text) > MAX_INLINE_CHARS:
        log.warning("Uploaded %s truncated from %d to %d characters", mime, len(text), MAX_INLINE_CHARS)
        text = text[:MAX_INLINE_CHARS]
    return SourceMaterial(mime=mime, text=text)
