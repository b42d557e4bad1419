from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union

from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.container import container_plugin
from mdit_py_plugins.front_matter import front_matter_plugin

from .inline_text import plain_text

_ADMONITION_RE = re.compile(r"^\s*>\s*\[!(TIP|INFO|WARNING|NOTE|IMPORTANT|CAUTION)\]\s*(.*)$", re.IGNORECASE)
_QUOTE_PREFIX_RE = re.compile(r"^\s*>\s?")
_FRONT_MATTER_KEY_RE = re.compile(r"^([A-Za-z0-9_-]+):\s*(.*)$")
_CALLOUT_KINDS = ("tip", "info", "warning", "note", "important", "caution")


@dataclass(frozen=True)
class Heading:
    depth: int
    text: str


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class ListItem:
    text: str
    children: list[ListBlock] = field(default_factory=list)


@dataclass(frozen=True)
class ListBlock:
    ordered: bool
    start: int = 1
    items: list[ListItem] = field(default_factory=list)


@dataclass(frozen=True)
class Table:
    header: list[str]
    rows: list[list[str]] = field(default_factory=list)


@dataclass(frozen=True)
class Rule:
    pass


@dataclass(frozen=True)
class Space:
    pass


@dataclass(frozen=True)
class CodeBlock:
    text: str
    language: str = ""


@dataclass(frozen=True)
class Callout:
    kind: str
    title: str
    text: str


@dataclass(frozen=True)
class ImageBlock:
    src: str
    alt: str = ""


Block = Union[Heading, Paragraph, ListBlock, Table, Rule, Space, CodeBlock, Callout, ImageBlock]

# Every top-level kind the lexer can produce. Renderers must handle all of them.
BLOCK_TYPES: tuple[type, ...] = (Heading, Paragraph, ListBlock, Table, Rule, Space, CodeBlock, Callout, ImageBlock)


def _normalize_admonitions(markdown: str) -> str:
    lines = str(markdown or "").splitlines()
    out: list[str] = []
    in_code = False
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.strip().startswith("```"):
            in_code = not in_code
            out.append(line)
            i += 1
            continue
        match = None if in_code else _ADMONITION_RE.match(line)
        if not match:
            out.append(line)
            i += 1
            continue
        kind = match.group(1).lower()
        title = (match.group(2) or "").strip()
        out.append(f"::: {kind}{(' ' + title) if title else ''}")
        i += 1
        while i < len(lines) and _QUOTE_PREFIX_RE.match(lines[i]):
            out.append(_QUOTE_PREFIX_RE.sub("", lines[i]))
            i += 1
        out.append(":::")
    return "\n".join(out)


def _build_markdown_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": False, "breaks": False})
    md.enable(["table", "strikethrough"])
    md.use(front_matter_plugin)
    for kind in _CALLOUT_KINDS:
        md.use(container_plugin, kind)
    return md


_MD_PARSER: MarkdownIt | None = None


def _get_markdown_parser() -> MarkdownIt:
    global _MD_PARSER
    if _MD_PARSER is None:
        _MD_PARSER = _build_markdown_parser()
    return _MD_PARSER


def _attrs_to_dict(attrs: object | None) -> dict[str, str]:
    if not attrs:
        return {}
    if isinstance(attrs, dict):
        return {str(k): "" if v is None else str(v) for k, v in attrs.items()}
    out: dict[str, str] = {}
    for item in attrs:  # type: ignore[attr-defined]
        if isinstance(item, (list, tuple)) and item:
            out[str(item[0])] = "" if len(item) < 2 or item[1] is None else str(item[1])
    return out


def _list_start(token: Token) -> int:
    attrs = _attrs_to_dict(token.attrs)
    try:
        return int(attrs.get("start", 1))
    except (TypeError, ValueError):
        return 1


def _strip_yaml_quotes(value: str) -> str:
    text = str(value or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1]
    return text.strip()


def parse_front_matter(front: str) -> dict[str, str]:
    """Flat ``key: value`` pairs only; nested YAML is not needed here."""
    meta: dict[str, str] = {}
    for raw in str(front or "").splitlines():
        m = _FRONT_MATTER_KEY_RE.match(raw)
        if m and m.group(2).strip():
            meta[m.group(1).strip()] = _strip_yaml_quotes(m.group(2))
    return meta


def _lone_image(inline: Token | None) -> ImageBlock | None:
    if inline is None or not inline.children:
        return None
    images = [c for c in inline.children if c.type == "image"]
    others = [c for c in inline.children if c.type != "image" and not (c.type == "text" and not c.content.strip())]
    if len(images) != 1 or others:
        return None
    img = images[0]
    src = _attrs_to_dict(img.attrs).get("src", "")
    if not src:
        return None
    alt = img.content or "".join(c.content for c in (img.children or []))
    return ImageBlock(src=src, alt=alt)


class _Lexer:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.front_matter: dict[str, str] = {}

    def blocks(self, i: int, close_type: str | None, *, top_level: bool = False) -> tuple[list[Block], int]:
        out: list[Block] = []
        prev_end: int | None = None
        tokens = self.tokens
        while i < len(tokens):
            tok = tokens[i]
            if close_type is not None and tok.type == close_type:
                return out, i + 1

            if top_level and tok.map and tok.nesting >= 0:
                if prev_end is not None and tok.map[0] - prev_end >= 2:
                    out.append(Space())
                prev_end = tok.map[1]

            block, i = self._block(i)
            if block is not None:
                out.append(block)
        return out, i

    def _block(self, i: int) -> tuple[Block | None, int]:
        tokens = self.tokens
        tok = tokens[i]
        t = tok.type

        if t == "front_matter":
            self.front_matter = parse_front_matter(tok.content)
            return None, i + 1

        if t == "heading_open":
            depth = int(tok.tag[1]) if tok.tag[:1] == "h" and tok.tag[1:].isdigit() else 2
            text = plain_text(tokens[i + 1])
            return (Heading(depth=depth, text=text) if text else None), i + 3

        if t == "paragraph_open":
            inline = tokens[i + 1]
            image = _lone_image(inline)
            if image is not None:
                return image, i + 3
            text = plain_text(inline, keep_linebreaks=True)
            return (Paragraph(text) if text else None), i + 3

        if t in ("bullet_list_open", "ordered_list_open"):
            return self._list(i)

        if t == "table_open":
            return self._table(i)

        if t == "hr":
            return Rule(), i + 1

        if t in ("fence", "code_block"):
            text = (tok.content or "").rstrip("\n")
            lang = (tok.info or "").strip().split(" ", 1)[0]
            return (CodeBlock(text=text, language=lang) if text.strip() else None), i + 1

        if t == "blockquote_open":
            inner, nxt = self.blocks(i + 1, "blockquote_close")
            text = "\n".join(_block_text(b) for b in inner if _block_text(b))
            return (Callout(kind="quote", title="", text=text) if text else None), nxt

        if t.startswith("container_") and t.endswith("_open"):
            kind = t[len("container_") : -len("_open")]
            parts = str(tok.info or "").strip().split(None, 1)
            title = parts[1].strip() if len(parts) > 1 else kind.title()
            inner, nxt = self.blocks(i + 1, f"container_{kind}_close")
            text = "\n".join(_block_text(b) for b in inner if _block_text(b))
            return Callout(kind=kind, title=title, text=text), nxt

        # html_block and anything unknown: skip one token. Closing tokens are
        # consumed by the matching opener above.
        return None, i + 1

    def _list(self, i: int) -> tuple[ListBlock, int]:
        tokens = self.tokens
        open_tok = tokens[i]
        ordered = open_tok.type == "ordered_list_open"
        close_type = "ordered_list_close" if ordered else "bullet_list_close"
        start = _list_start(open_tok) if ordered else 1
        items: list[ListItem] = []
        i += 1
        while i < len(tokens) and tokens[i].type != close_type:
            if tokens[i].type != "list_item_open":
                i += 1
                continue
            inner, i = self.blocks(i + 1, "list_item_close")
            text = " ".join(_block_text(b) for b in inner if not isinstance(b, ListBlock) and _block_text(b))
            children = [b for b in inner if isinstance(b, ListBlock)]
            items.append(ListItem(text=text, children=children))
        return ListBlock(ordered=ordered, start=start, items=items), i + 1

    def _table(self, i: int) -> tuple[Table | None, int]:
        tokens = self.tokens
        header: list[str] = []
        rows: list[list[str]] = []
        current: list[str] | None = None
        in_head = False
        cell = ""
        i += 1
        while i < len(tokens) and tokens[i].type != "table_close":
            tok = tokens[i]
            if tok.type == "thead_open":
                in_head = True
            elif tok.type == "thead_close":
                in_head = False
            elif tok.type == "tr_open":
                current = []
            elif tok.type in ("th_open", "td_open"):
                cell = ""
            elif tok.type == "inline" and current is not None:
                cell = plain_text(tok)
            elif tok.type in ("th_close", "td_close") and current is not None:
                current.append(cell)
            elif tok.type == "tr_close" and current is not None:
                if in_head:
                    header = current
                else:
                    rows.append(current)
                current = None
            i += 1
        if not header and not rows:
            return None, i + 1
        return Table(header=header, rows=rows), i + 1


def _block_text(block: Block) -> str:
    if isinstance(block, (Paragraph, Heading)):
        return block.text
    if isinstance(block, CodeBlock):
        return block.text
    if isinstance(block, Callout):
        return block.text
    if isinstance(block, ListBlock):
        return " ".join(item.text for item in block.items)
    if isinstance(block, ImageBlock):
        return block.alt
    return ""


def lex_with_meta(markdown: str) -> tuple[list[Block], dict[str, str]]:
    """Parse Markdown into block tokens plus any flat front-matter metadata."""
    src = str(markdown or "").replace("\r\n", "\n")
    if src.startswith("\ufeff"):
        src = src[1:]
    tokens = _get_markdown_parser().parse(_normalize_admonitions(src))
    lexer = _Lexer(tokens)
    blocks, _ = lexer.blocks(0, None, top_level=True)
    return blocks, lexer.front_matter


def lex(markdown: str) -> list[Block]:
    return lex_with_meta(markdown)[0]


def kind_sequence(blocks: list[Block]) -> list[str]:
    return [type(b).__name__ for b in blocks]
