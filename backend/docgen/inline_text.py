from __future__ import annotations

from markdown_it.token import Token


def plain_text(token: Token | None, *, keep_linebreaks: bool = False) -> str:
    """Flatten an ``inline`` token to plain text.

    Emphasis, code spans, strikethrough and link markup never reach the
    text. Link targets are dropped and images contribute their alt text.
    Raw inline HTML is ignored.
    """
    if token is None:
        return ""
    if token.type != "inline" or not token.children:
        return token.content.strip()

    parts: list[str] = []
    for child in token.children:
        t = child.type
        if t in ("text", "code_inline"):
            parts.append(child.content)
        elif t == "softbreak":
            parts.append("\n" if keep_linebreaks else " ")
        elif t == "hardbreak":
            parts.append("\n")
        elif t == "image":
            parts.append(child.content or "".join(c.content for c in (child.children or [])))
    return "".join(parts).strip()
