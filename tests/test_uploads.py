"""Tests for upload encoding and source preparation."""
import base64

import pytest

from docgen import config
from docgen.uploads import (
    UploadError,
    UploadTooLargeError,
    decode_data_uri,
    encode_data_uri,
    encode_upload,
    guess_mime,
    html_to_markdown,
    prepare_source,
)


def test_guess_mime_prefers_extension():
    assert guess_mime("notes.md", "application/octet-stream") == "text/markdown"
    assert guess_mime("brief.PDF", None) == "application/pdf"
    assert guess_mime("blob", "text/plain; charset=utf-8") == "text/plain"


def test_encode_upload_round_trip():
    uri = encode_upload(b"hello", filename="notes.txt", content_type="text/plain")
    assert uri == "data:text/plain;base64," + base64.b64encode(b"hello").decode("ascii")
    assert decode_data_uri(uri) == ("text/plain", b"hello")


def test_encode_upload_rejects_bad_input(monkeypatch):
    with pytest.raises(UploadError):
        encode_upload(b"", filename="empty.txt")
    with pytest.raises(UploadError):
        encode_upload(b"\x89PNG", filename="photo.png", content_type="image/png")
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 4)
    with pytest.raises(UploadTooLargeError):
        encode_upload(b"12345", filename="big.txt")


def test_decode_rejects_non_data_uri():
    with pytest.raises(ValueError):
        decode_data_uri("https://example.com/file.txt")


def test_prepare_source_inlines_text():
    source = prepare_source(encode_data_uri(b"Riders need ETAs.\r\n", "text/plain"))
    assert source is not None
    assert source.text == "Riders need ETAs."
    assert source.attachment is None


def test_prepare_source_converts_html():
    html = b"<html><head><style>p{}</style></head><body><h1>Scope</h1><p>Only <b>riders</b>.</p></body></html>"
    source = prepare_source(encode_data_uri(html, "text/html"))
    assert source is not None
    assert source.text.startswith("# Scope")
    assert "**riders**" in source.text
    assert "p{}" not in source.text


def test_prepare_source_attaches_pdf():
    source = prepare_source(encode_data_uri(b"%PDF-1.4 fake", "application/pdf"))
    assert source is not None
    assert source.text == ""
    assert source.attachment["type"] == "file"
    assert source.attachment["file"]["file_data"].startswith("data:application/pdf;base64,")


def test_prepare_source_handles_missing_and_invalid():
    assert prepare_source(None) is None
    assert prepare_source("  ") is None
    with pytest.raises(UploadError):
        prepare_source("not a data uri")
    with pytest.raises(UploadError):
        prepare_source(encode_data_uri(b"x", "image/png"))


def test_html_to_markdown_uses_atx_headings():
    assert html_to_markdown("<h2>Goals</h2><ul><li>Fast</li></ul>").startswith("## Goals")
