"""Tests for the Markdown lexer: block kinds, front matter and inline flattening."""
from docgen.markdown_tokens import (
    BLOCK_TYPES,
    Callout,
    CodeBlock,
    Heading,
    ImageBlock,
    ListBlock,
    Paragraph,
    Rule,
    Space,
    Table,
    kind_sequence,
    lex,
    lex_with_meta,
    parse_front_matter,
)
from tests.conftest import png_data_uri


def test_basic_document_kinds():
    blocks = lex("# Title\n\nSome text.\n\n- a\n- b\n\n1. one\n2. two\n")
    assert kind_sequence(blocks) == ["Heading", "Paragraph", "ListBlock", "ListBlock"]
    assert blocks[0] == Heading(depth=1, text="Title")
    assert blocks[2].ordered is False
    assert blocks[3].ordered is True
    assert [i.text for i in blocks[3].items] == ["one", "two"]


def test_heading_depths():
    blocks = lex("# One\n\n## Two\n\n### Three\n")
    assert [(b.depth, b.text) for b in blocks] == [(1, "One"), (2, "Two"), (3, "Three")]


def test_ordered_list_keeps_start_number():
    blocks = lex("3. third\n4. fourth\n")
    assert isinstance(blocks[0], ListBlock)
    assert blocks[0].start == 3


def test_nested_list_children():
    blocks = lex("- parent\n  - child one\n  - child two\n- sibling\n")
    lst = blocks[0]
    assert [i.text for i in lst.items] == ["parent", "sibling"]
    assert len(lst.items[0].children) == 1
    assert [i.text for i in lst.items[0].children[0].items] == ["child one", "child two"]
    assert lst.items[1].children == []


def test_table_header_and_rows():
    blocks = lex("| Term | Definition |\n|---|---|\n| API | Interface |\n| SLA | Agreement |\n")
    assert blocks == [Table(header=["Term", "Definition"], rows=[["API", "Interface"], ["SLA", "Agreement"]])]


def test_rule_and_code_block():
    blocks = lex("Before\n\n---\n\n```python\nprint('hi')\n```\n")
    assert isinstance(blocks[1], Rule)
    assert blocks[2] == CodeBlock(text="print('hi')", language="python")


def test_blockquote_becomes_quote_callout():
    blocks = lex("> quoted words\n")
    assert blocks == [Callout(kind="quote", title="", text="quoted words")]


def test_admonition_becomes_titled_callout():
    blocks = lex("> [!WARNING] Careful\n> Do not deploy on Fridays.\n")
    assert len(blocks) == 1
    callout = blocks[0]
    assert isinstance(callout, Callout)
    assert callout.kind == "warning"
    assert callout.title == "Careful"
    assert "Do not deploy on Fridays." in callout.text


def test_admonition_inside_code_fence_is_left_alone():
    blocks = lex("```\n> [!TIP] not a callout\n```\n")
    assert kind_sequence(blocks) == ["CodeBlock"]
    assert "[!TIP]" in blocks[0].text


def test_two_blank_lines_emit_space():
    assert kind_sequence(lex("First\n\n\nSecond\n")) == ["Paragraph", "Space", "Paragraph"]
    assert kind_sequence(lex("First\n\nSecond\n")) == ["Paragraph", "Paragraph"]


def test_inline_markup_is_flattened():
    blocks = lex("**Bold** and *em* and `code` and [a link](https://example.com).\n")
    assert blocks == [Paragraph("Bold and em and code and a link.")]


def test_lone_image_becomes_image_block():
    uri = png_data_uri()
    blocks = lex(f"![Diagram]({uri})\n")
    assert len(blocks) == 1
    assert isinstance(blocks[0], ImageBlock)
    assert blocks[0].alt == "Diagram"
    assert blocks[0].src.startswith("data:image/png;base64,")


def test_image_inside_text_stays_paragraph():
    blocks = lex("See ![icon](icon.png) here.\n")
    assert blocks == [Paragraph("See icon here.")]


def test_front_matter_is_metadata_not_content():
    blocks, meta = lex_with_meta('---\nheader_left: Acme Corp\nwatermark: "DRAFT"\n---\n# Title\n')
    assert meta == {"header_left": "Acme Corp", "watermark": "DRAFT"}
    assert kind_sequence(blocks) == ["Heading"]


def test_parse_front_matter_skips_nested_and_empty_values():
    meta = parse_front_matter("title: Plan\nowners:\n  - ann\nempty:\n")
    assert meta == {"title": "Plan"}


def test_empty_input_has_no_blocks():
    assert lex("") == []
    assert lex("\n\n   \n") == []


def test_bom_and_crlf_are_tolerated():
    blocks = lex("\ufeff# Title\r\n\r\nBody\r\n")
    assert kind_sequence(blocks) == ["Heading", "Paragraph"]


def test_block_types_cover_every_kind():
    assert set(BLOCK_TYPES) == {Heading, Paragraph, ListBlock, Table, Rule, Space, CodeBlock, Callout, ImageBlock}
