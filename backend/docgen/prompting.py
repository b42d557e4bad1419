from __future__ import annotations

import re
from typing import Any

_IF_BLOCK_RE = re.compile(r"\{\{#if\s+([A-Za-z0-9_]+)\s*\}\}(.*?)\{\{/if\}\}", re.DOTALL)
_LEFTOVER_RE = re.compile(r"\{\{\s*[A-Za-z0-9_]+\s*\}\}")


class PromptTemplateError(RuntimeError):
    pass


def _expand_conditionals(template: str, variables: dict[str, Any]) -> str:
    def repl(m: re.Match[str]) -> str:
        value = variables.get(m.group(1))
        return m.group(2) if value not in (None, "", [], {}) else ""

    return _IF_BLOCK_RE.sub(repl, template)


def render_template(template: str, variables: dict[str, Any], required_placeholders: list[str] | None = None) -> str:
    """Fill ``{{name}}`` placeholders; ``{{#if name}}...{{/if}}`` drops out when ``name`` is empty."""
    required_placeholders = required_placeholders or []

    missing = [p for p in required_placeholders if f"{{{{{p}}}}}" not in template]
    if missing:
        raise PromptTemplateError(
            "Prompt template missing required placeholders: " + ", ".join(f"{{{{{m}}}}}" for m in missing)
        )

    out = _expand_conditionals(template, variables)
    for key, value in variables.items():
        out = out.replace(f"{{{{{key}}}}}", "" if value is None else str(value))
    # Unknown placeholders render empty rather than leaking braces into the prompt.
    out = _LEFTOVER_RE.sub("", out)
    return re.sub(r"\n{3,}", "\n\n", out).strip()
