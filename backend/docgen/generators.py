from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime
from typing import Any

from . import config, llm
from .diagrams import clean_mermaid, validate_mermaid
from .logging_utils import get_logger
from .markdown_tokens import Heading, lex
from .prompting import render_template
from .schemas import DocumentRequest, FlowchartRequest, WireframesRequest
from .settings import get_effective, prompt_template
from .uploads import SourceMaterial, html_to_markdown, looks_like_html, prepare_source
from .wireframes import WireframeError, normalize_image_uri

log = get_logger(__name__)

MAX_SCREENS = 5

REQUIRED_SECTIONS: dict[str, tuple[str, ...]] = {
    "BRD": ("goals", "scope", "functional requirements", "non-functional requirements"),
    "FRS": ("purpose", "functional requirements"),
    "SRS": ("introduction", "overall description", "non-functional requirements"),
}

STYLE_NOTES = {
    "Sketchy": "hand-drawn look with rough pencil lines, informal and quick, black on white",
    "Clean": "crisp black and white low-fidelity layout with neat grey boxes and no colour",
    "High-Fidelity": "polished greyscale mockup with realistic spacing, icons and typography, still no photos",
}

_OUTER_FENCE_RE = re.compile(r"^\s*```(?:markdown|md)?[ \t]*\n(.*)\n```\s*$", re.DOTALL | re.IGNORECASE)
_MERMAID_FENCE_RE = re.compile(r"```(?:mermaid)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_JSON_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_FENCE_LINE_RE = re.compile(r"^[ \t]*(`{3,}|~{3,})")
_PARAGRAPH_BREAK_RE = re.compile(r"(\n[ \t]*\n\s*)")
_NON_FUNCTIONAL_RE = re.compile(r"non[\s_]+functional", re.IGNORECASE)


class GenerationError(RuntimeError):
    """Raised for any failed generation; the message is shown to the user as-is."""

    def __init__(self, thing: str, reason: str) -> None:
        self.thing = thing
        self.reason = reason
        super().__init__(f"Failed to generate {thing}. {reason}".strip())


def current_date(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"{now:%B} {now.day}, {now.year}"


def _llm_settings(effective: dict[str, Any]) -> dict[str, Any]:
    value = effective.get("llm")
    return value if isinstance(value, dict) else {}


def organization_name(effective: dict[str, Any]) -> str:
    branding = effective.get("branding")
    return str(branding.get("organization") or "") if isinstance(branding, dict) else ""


def _messages(prompt: str, source: SourceMaterial | None) -> list[dict[str, Any]]:
    if source is not None and source.attachment is not None:
        return [{"role": "user", "content": [{"type": "text", "text": prompt}, source.attachment]}]
    return [{"role": "user", "content": prompt}]


def _model_for(source: SourceMaterial | None) -> str | None:
    # A stronger model reads uploaded files when one is configured.
    if source is not None and config.LLM_FILE_MODEL:
        return config.LLM_FILE_MODEL
    return None


async def _complete(
    thing: str,
    prompt: str,
    source: SourceMaterial | None,
    effective: dict[str, Any],
    *,
    json_mode: bool = False,
) -> str:
    opts = _llm_settings(effective)
    temperature = float(opts.get("json_temperature" if json_mode else "temperature", 0.3))
    try:
        reply = await llm.chat_completion(
            _messages(prompt, source),
            temperature=temperature,
            max_tokens=int(opts.get("max_tokens", 8000)),
            model=_model_for(source),
            timeout_s=float(opts.get("timeout_s", 180)),
            response_format={"type": "json_object"} if json_mode else None,
        )
    except llm.LLMError as e:
        raise GenerationError(thing, str(e)) from e
    if not reply or not reply.strip():
        raise GenerationError(thing, "The model returned an empty response.")
    return reply


def strip_outer_fence(text: str) -> str:
    m = _OUTER_FENCE_RE.match(text or "")
    return m.group(1) if m else (text or "")


def _split_fenced(markdown: str) -> list[tuple[bool, str]]:
    """(is_code, text) segments; joining the texts with newlines restores the input."""
    segments: list[tuple[bool, list[str]]] = []
    fence: str | None = None
    for line in markdown.split("\n"):
        m = _FENCE_LINE_RE.match(line)
        if fence is not None:
            segments[-1][1].append(line)
            marker = line.strip()
            if m and marker.startswith(fence) and not marker.strip(fence[0]):
                fence = None
        elif m:
            fence = m.group(1)
            segments.append((True, [line]))
        else:
            if not segments or segments[-1][0]:
                segments.append((False, []))
            segments[-1][1].append(line)
    return [(code, "\n".join(lines)) for code, lines in segments]


def _convert_prose(text: str) -> str:
    parts = _PARAGRAPH_BREAK_RE.split(text)
    for i in range(0, len(parts), 2):
        chunk = parts[i]
        body = chunk.strip()
        if body.startswith("<") and looks_like_html(body):
            start = chunk.index(body)
            parts[i] = chunk[:start] + html_to_markdown(body) + chunk[start + len(body):]
        else:
            parts[i] = _BR_RE.sub(" ", chunk)
    return "".join(parts)


def _convert_html_chunks(markdown: str) -> str:
    """Convert stray HTML paragraphs; fenced code passes through unchanged."""
    return "\n".join(text if code else _convert_prose(text) for code, text in _split_fenced(markdown))


def _has_title_heading(markdown: str, title: str) -> bool:
    needle = title.strip().lower()
    return any(isinstance(b, Heading) and b.depth == 1 and needle in b.text.lower() for b in lex(markdown))


def clean_document(markdown: str, title: str) -> str:
    text = strip_outer_fence(str(markdown or "").replace("\r\n", "\n")).strip()
    if text.startswith("<") and looks_like_html(text):
        text = html_to_markdown(text)
    else:
        text = _convert_html_chunks(text)
    text = text.strip()
    if not text:
        return ""
    if not _has_title_heading(text, title):
        text = f"# {title}\n\n{text}"
    return text + "\n"


def missing_sections(markdown: str, document_type: str) -> list[str]:
    headings = [_NON_FUNCTIONAL_RE.sub("non-functional", b.text.lower()) for b in lex(markdown) if isinstance(b, Heading)]
    missing: list[str] = []
    for section in REQUIRED_SECTIONS.get(document_type, ()):
        pattern = re.compile(r"(?<![\w-])" + re.escape(section))
        if not any(pattern.search(h) for h in headings):
            missing.append(section)
    return missing


def _prompt(name: str, variables: dict[str, Any], effective: dict[str, Any]) -> str:
    template, required = prompt_template(name, effective)
    return render_template(template, variables, required)


async def generate_document(req: DocumentRequest, *, effective: dict[str, Any] | None = None) -> dict[str, Any]:
    effective = effective if effective is not None else get_effective()
    source = prepare_source(req.uploaded_file)
    prompt = _prompt(
        req.document_type.lower(),
        {
            "title": req.title,
            "description": req.description or "No description provided; infer it from the title and source.",
            "document_type": req.document_type,
            "current_date": current_date(),
            "organization": organization_name(effective),
            "source": source.text if source else "",
            "attachment": "yes" if source and source.attachment else "",
        },
        effective,
    )
    log.info("Generating %s for %r (source=%s)", req.document_type, req.title, source.mime if source else None)
    reply = await _complete("document", prompt, source, effective)
    markdown = clean_document(reply, req.title)
    if not markdown:
        raise GenerationError("document", "The model response contained no usable content.")
    warnings = [f"Missing section: {s}" for s in missing_sections(markdown, req.document_type)]
    if warnings:
        log.warning("%s for %r is missing sections: %s", req.document_type, req.title, ", ".join(warnings))
    return {"document_type": req.document_type, "markdown": markdown, "warnings": warnings}


def _json_object(text: str) -> Any:
    src = str(text or "").strip()
    m = _JSON_FENCE_RE.search(src)
    if m:
        src = m.group(1).strip()
    try:
        return json.loads(src)
    except ValueError:
        pass
    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start, end = src.find(open_ch), src.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return json.loads(src[start : end + 1])
            except ValueError:
                continue
    return None


def parse_mermaid_reply(text: str) -> str:
    data = _json_object(text)
    if isinstance(data, dict):
        value = data.get("mermaidSyntax") or data.get("mermaid_syntax") or data.get("mermaid")
        if isinstance(value, str) and value.strip():
            return clean_mermaid(value)
    m = _MERMAID_FENCE_RE.search(text or "")
    if m and m.group(1).strip():
        return clean_mermaid(m.group(1))
    raw = clean_mermaid(text)
    return "" if raw.lstrip().startswith(("{", "[")) else raw


async def generate_flowchart(req: FlowchartRequest, *, effective: dict[str, Any] | None = None) -> dict[str, Any]:
    effective = effective if effective is not None else get_effective()
    source = prepare_source(req.uploaded_file)
    prompt = _prompt(
        "flowchart",
        {
            "title": req.title,
            "description": req.description,
            "source": source.text if source else "",
            "attachment": "yes" if source and source.attachment else "",
        },
        effective,
    )
    log.info("Generating flowchart for %r", req.title)
    reply = await _complete("flowchart", prompt, source, effective, json_mode=True)
    syntax = parse_mermaid_reply(reply)
    if not syntax:
        raise GenerationError("flowchart", "The model returned no diagram syntax.")
    problem = validate_mermaid(syntax)
    if problem:
        log.warning("Flowchart for %r has invalid syntax: %s", req.title, problem)
    return {"mermaid_syntax": syntax, "syntax_error": problem, "date": current_date()}


def parse_screens(text: str) -> list[dict[str, str]]:
    data = _json_object(text)
    if isinstance(data, dict):
        data = data.get("wireframes") or data.get("screens")
    if not isinstance(data, list):
        raise GenerationError("wireframes", "The model did not return a list of screens.")
    screens: list[dict[str, str]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = str(item.get("screenName") or item.get("name") or "").strip()
        description = str(item.get("description") or "").strip()
        if name and description:
            screens.append({"screenName": name, "description": description})
    if not screens:
        raise GenerationError("wireframes", "Failed to generate wireframe text descriptions.")
    if len(screens) > MAX_SCREENS:
        log.info("Keeping the first %d of %d screens", MAX_SCREENS, len(screens))
        screens = screens[:MAX_SCREENS]
    return screens


async def _screen_image(screen: dict[str, str], prompt: str, effective: dict[str, Any]) -> dict[str, str]:
    opts = _llm_settings(effective)
    name = screen["screenName"]
    try:
        uri = await llm.generate_image(
            prompt,
            size=str(opts.get("image_size") or "1024x1024"),
            timeout_s=float(opts.get("timeout_s", 180)),
        )
        image = await asyncio.to_thread(normalize_image_uri, uri)
    except (llm.LLMError, WireframeError) as e:
        raise GenerationError("wireframes", f"Failed to generate image for screen: {name}. {e}") from e
    return {**screen, "image": image}


async def generate_wireframes(req: WireframesRequest, *, effective: dict[str, Any] | None = None) -> dict[str, Any]:
    effective = effective if effective is not None else get_effective()
    source = prepare_source(req.uploaded_file)
    prompt = _prompt(
        "wireframes",
        {
            "title": req.title,
            "description": req.description,
            "style": req.style,
            "source": source.text if source else "",
            "attachment": "yes" if source and source.attachment else "",
        },
        effective,
    )
    log.info("Generating %s wireframes for %r", req.style, req.title)
    reply = await _complete("wireframes", prompt, source, effective, json_mode=True)
    screens = parse_screens(reply)

    image_prompts = [
        _prompt(
            "wireframe_image",
            {
                "style": req.style,
                "style_notes": STYLE_NOTES.get(req.style, ""),
                "screen_name": screen["screenName"],
                "description": screen["description"],
            },
            effective,
        )
        for screen in screens
    ]
    jobs = [_screen_image(s, p, effective) for s, p in zip(screens, image_prompts)]
    # All screens or none: the first failure cancels the remaining images.
    wireframes = await llm.gather_all(jobs)
    return {"style": req.style, "wireframes": wireframes}
