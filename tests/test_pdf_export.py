"""Tests for the document exporter: PDF bytes, branding and Markdown export."""
import pytest

from docgen.markdown_tokens import kind_sequence, lex
from docgen.pdf_export import (
    Branding,
    ExportError,
    apply_front_matter,
    export_markdown,
    prepare_document,
    render_markdown_to_pdf,
    safe_filename,
    write_pdf,
)
from docgen.pdf_layout import TextOp
from tests.conftest import png_data_uri

SAMPLE = """# Ride Share App

## Goals

Match riders with drivers quickly.

| Term | Definition |
|---|---|
| ETA | Estimated time of arrival |

1. Request
2. Match

> [!NOTE] Scope
> Payments are out of scope.

```json
{"ok": true}
```
"""


def test_render_returns_pdf_bytes():
    pdf = render_markdown_to_pdf(SAMPLE, title="Ride Share App")
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 500


def test_branding_header_footer_and_watermark_render():
    branding = Branding(header_left="Acme", header_right="Confidential", footer="Internal", watermark="DRAFT")
    pdf = render_markdown_to_pdf(SAMPLE, title="Ride Share App", branding=branding)
    assert pdf.startswith(b"%PDF")


def test_missing_logo_falls_back_to_placeholder(tmp_path):
    branding = Branding(header_left="Acme", logo_path=str(tmp_path / "missing.png"))
    pdf = render_markdown_to_pdf("# Title\n\nBody\n", title="Title", branding=branding)
    assert pdf.startswith(b"%PDF")


def test_data_uri_logo_is_accepted():
    branding = Branding(header_left="Acme", logo_path=png_data_uri())
    pdf = render_markdown_to_pdf("# Title\n\nBody\n", title="Title", branding=branding)
    assert pdf.startswith(b"%PDF")


def test_branded_layout_reserves_header_and_footer_room():
    plain = prepare_document("Body\n", title="t", branding=Branding(page_numbers=False))
    branded = prepare_document("Body\n", title="t", branding=Branding(header_left="Acme", footer="f"))
    assert plain.layout.margin_top == 15.0
    assert plain.layout.margin_bottom == 15.0
    assert branded.layout.margin_top > plain.layout.margin_top
    assert branded.layout.margin_bottom > plain.layout.margin_bottom
    first = branded.document.ops(TextOp)[0]
    assert first.y >= branded.layout.margin_top


def test_document_is_frozen_after_export():
    prepared = prepare_document("# Title\n\nBody\n", title="Title")
    write_pdf(prepared)
    assert prepared.document.frozen
    with pytest.raises(ExportError):
        write_pdf(prepared)


@pytest.mark.parametrize("markdown", ["", "   \n\n"])
def test_empty_markdown_is_refused(markdown):
    with pytest.raises(ExportError):
        render_markdown_to_pdf(markdown, title="Empty")


def test_front_matter_only_is_refused():
    with pytest.raises(ExportError):
        render_markdown_to_pdf("---\nwatermark: DRAFT\n---\n", title="Empty")


def test_front_matter_overrides_branding():
    prepared = prepare_document(
        "---\nheader_left: From Doc\nwatermark: DRAFT\n---\n# Title\n",
        title="Title",
        branding=Branding(header_left="From Settings", header_right="Right"),
    )
    assert prepared.branding.header_left == "From Doc"
    assert prepared.branding.header_right == "Right"
    assert prepared.branding.watermark == "DRAFT"


def test_apply_front_matter_ignores_unknown_keys():
    branding = Branding(footer="Keep")
    assert apply_front_matter(branding, {"footer": "Nope", "title": "x"}) is branding


def test_branding_from_settings():
    branding = Branding.from_settings({"header_left": "Acme", "page_numbers": False, "organization": "ignored"})
    assert branding.header_left == "Acme"
    assert branding.page_numbers is False
    assert branding.has_header
    assert not branding.has_footer


def test_long_document_spans_pages():
    markdown = "# Long\n\n" + "\n\n".join(f"Paragraph {n}. " + "words " * 80 for n in range(40))
    prepared = prepare_document(markdown, title="Long")
    assert len(prepared.document.pages) > 2
    assert write_pdf(prepared).startswith(b"%PDF")


def test_export_markdown_normalizes_edges_and_round_trips():
    text = export_markdown("\n\n" + SAMPLE.replace("\n", "\r\n") + "\n\n")
    assert text.endswith("\n") and not text.endswith("\n\n")
    assert not text.startswith("\n")
    assert kind_sequence(lex(text)) == kind_sequence(lex(SAMPLE))


def test_export_markdown_refuses_empty():
    with pytest.raises(ExportError):
        export_markdown("  \n")


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Ride Share App", "ride_share_app.pdf"),
        ("  BRD: v2 / final!  ", "brd_v2_final.pdf"),
        ("", "document.pdf"),
        ("***", "document.pdf"),
    ],
)
def test_safe_filename(title, expected):
    assert safe_filename(title, "pdf") == expected
