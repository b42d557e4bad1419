from __future__ import annotations

import asyncio
import secrets
from typing import Any, Awaitable, TypeVar

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from . import app_db, config
from .diagrams import png_data_uri, render_flowchart_png, render_flowchart_svg
from .generators import (
    GenerationError,
    current_date,
    generate_document,
    generate_flowchart,
    generate_wireframes,
    organization_name,
)
from .logging_utils import get_logger
from .pdf_export import Branding, ExportError, export_markdown, render_markdown_to_pdf, safe_filename
from .prompting import PromptTemplateError
from .schemas import (
    AdminSettingsResponse,
    AdminSettingsUpdateRequest,
    DocumentRequest,
    ExportPdfRequest,
    FlowchartRequest,
    GenerationKind,
    GenerationResponse,
    GenerationSummary,
    UploadResponse,
    WireframesRequest,
)
from .settings import SEEDED_KEYS, SettingsError, ensure_defaults, get_settings_bundle, update_settings
from .uploads import UploadError, UploadTooLargeError, encode_upload, guess_mime
from .wireframes import WireframeError, get_screen, screen_filename, screen_png, screen_text, wireframes_markdown

log = get_logger(__name__)

T = TypeVar("T")

app = FastAPI(title="docgen-studio")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    app_db.init_db()
    ensure_defaults()


@app.exception_handler(RequestValidationError)
async def _validation_failed(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        detail[".".join(loc) or "request"] = str(err.get("msg") or "Invalid value")
    return JSONResponse(status_code=422, content={"error": "validation_failed", "detail": detail})


def _effective_settings() -> dict[str, Any]:
    try:
        return get_settings_bundle()["effective"]
    except SettingsError as e:
        log.exception("Settings error")
        raise HTTPException(status_code=500, detail=str(e)) from e


def _branding(effective: dict[str, Any]) -> Branding:
    branding = effective.get("branding")
    return Branding.from_settings(branding if isinstance(branding, dict) else {})


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


async def _generate(coro: Awaitable[T]) -> T:
    try:
        return await coro
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except UploadError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except GenerationError as e:
        log.exception("Generation failed")
        raise HTTPException(status_code=502, detail=str(e)) from e
    except (PromptTemplateError, SettingsError) as e:
        log.exception("Prompt configuration error")
        raise HTTPException(status_code=500, detail=str(e)) from e


def _store(kind: str, title: str, payload: dict[str, Any]) -> GenerationResponse:
    record = app_db.insert_generation(kind=kind, title=title, payload=payload)
    return GenerationResponse(**record, warnings=list(payload.get("warnings") or []))


def _load_generation(generation_id: str) -> dict[str, Any]:
    record = app_db.get_generation(generation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return record


def _screens(record: dict[str, Any]) -> list[dict[str, Any]]:
    screens = record["payload"].get("wireframes") or []
    if not screens:
        raise HTTPException(status_code=409, detail="This result has no wireframes to export")
    return screens


def _pdf_response(markdown: str, title: str, branding: Branding) -> Response:
    try:
        pdf = render_markdown_to_pdf(markdown, title=title, branding=branding)
    except ExportError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return Response(content=pdf, media_type="application/pdf", headers=_attachment(safe_filename(title, "pdf")))


async def _flowchart_png(record: dict[str, Any], effective: dict[str, Any]) -> tuple[bytes, str | None]:
    payload = record["payload"]
    syntax = str(payload.get("mermaid_syntax") or "")
    if not syntax.strip():
        raise HTTPException(status_code=409, detail="This result has no diagram to export")
    mermaid = effective.get("mermaid") if isinstance(effective.get("mermaid"), dict) else {}
    image = await render_flowchart_png(
        syntax,
        title=record["title"],
        organization=organization_name(effective),
        date=str(payload.get("date") or current_date()),
        theme=str(mermaid.get("theme") or "default"),
        background=str(mermaid.get("background") or "white"),
        timeout_s=float(mermaid.get("timeout_s") or 30),
    )
    return image.png, image.error


@app.get("/health")
def health() -> dict[str, Any]:
    try:
        get_settings_bundle()
        settings_ok = True
    except SettingsError:
        settings_ok = False
    return {
        "status": "ok",
        "llm_base_url": config.LLM_BASE_URL,
        "llm_model": config.LLM_MODEL or "auto",
        "image_model": config.IMAGE_MODEL,
        "mermaid_url": config.MERMAID_RENDER_URL,
        "settings_ok": settings_ok,
        "admin_enabled": bool(config.ADMIN_TOKEN),
    }


@app.post("/uploads/encode", response_model=UploadResponse)
async def uploads_encode(file: UploadFile = File(...)) -> UploadResponse:
    data = await file.read()
    try:
        uri = encode_upload(data, filename=file.filename, content_type=file.content_type)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except UploadError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return UploadResponse(
        data_uri=uri,
        mime=guess_mime(file.filename, file.content_type),
        size=len(data),
        filename=file.filename,
    )


@app.post("/generate/document", response_model=GenerationResponse)
async def generate_document_route(req: DocumentRequest) -> GenerationResponse:
    effective = _effective_settings()
    payload = await _generate(generate_document(req, effective=effective))
    return _store("document", req.title, payload)


@app.post("/generate/flowchart", response_model=GenerationResponse)
async def generate_flowchart_route(req: FlowchartRequest) -> GenerationResponse:
    effective = _effective_settings()
    payload = await _generate(generate_flowchart(req, effective=effective))
    return _store("flowchart", req.title, payload)


@app.post("/generate/wireframes", response_model=GenerationResponse)
async def generate_wireframes_route(req: WireframesRequest) -> GenerationResponse:
    effective = _effective_settings()
    payload = await _generate(generate_wireframes(req, effective=effective))
    return _store("wireframes", req.title, payload)


@app.get("/generations", response_model=list[GenerationSummary])
def list_generations_route(
    kind: GenerationKind | None = None, limit: int = Query(default=50, ge=1, le=200)
) -> list[dict[str, Any]]:
    return app_db.list_generations(kind=kind, limit=limit)


@app.get("/generations/{generation_id}", response_model=GenerationResponse)
def get_generation(generation_id: str) -> GenerationResponse:
    record = _load_generation(generation_id)
    return GenerationResponse(**record, warnings=list(record["payload"].get("warnings") or []))


@app.get("/generations/{generation_id}/export.pdf")
async def export_pdf(generation_id: str) -> Response:
    record = _load_generation(generation_id)
    effective = _effective_settings()
    branding = _branding(effective)
    title = record["title"]
    kind = record["kind"]
    payload = record["payload"]

    if kind == "document":
        markdown = str(payload.get("markdown") or "")
    elif kind == "flowchart":
        png, error = await _flowchart_png(record, effective)
        markdown = f"# {title}\n\n![{title}]({png_data_uri(png)})\n"
        if error:
            syntax = str(payload.get("mermaid_syntax") or "")
            markdown += f"\n> Diagram could not be rendered: {error}\n\n```mermaid\n{syntax}\n```\n"
    else:
        markdown = wireframes_markdown(title, _screens(record), style=str(payload.get("style") or ""))

    if not markdown.strip():
        raise HTTPException(status_code=409, detail="Nothing to export: the result is empty")
    return await asyncio.to_thread(_pdf_response, markdown, title, branding)


@app.get("/generations/{generation_id}/export.md")
def export_md(generation_id: str) -> Response:
    record = _load_generation(generation_id)
    if record["kind"] != "document":
        raise HTTPException(status_code=409, detail="Markdown export is only available for documents")
    try:
        text = export_markdown(str(record["payload"].get("markdown") or ""))
    except ExportError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return Response(
        content=text.encode("utf-8"),
        media_type="text/markdown; charset=utf-8",
        headers=_attachment(safe_filename(record["title"], "md")),
    )


@app.get("/generations/{generation_id}/export.png")
async def export_png(generation_id: str, screen: int | None = Query(default=None, ge=1)) -> Response:
    record = _load_generation(generation_id)
    kind = record["kind"]
    if kind == "flowchart":
        png, error = await _flowchart_png(record, _effective_settings())
        headers = _attachment(safe_filename(record["title"], "png"))
        if error:
            headers["X-Diagram-Error"] = error.replace("\n", " ")[:200]
        return Response(content=png, media_type="image/png", headers=headers)
    if kind == "wireframes":
        if screen is None:
            raise HTTPException(status_code=422, detail="Pass ?screen=N to choose a wireframe screen")
        try:
            item = get_screen(_screens(record), screen)
        except WireframeError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        try:
            png = await asyncio.to_thread(screen_png, str(item.get("image") or ""))
        except WireframeError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        filename = screen_filename(str(item.get("screenName") or ""), screen)
        return Response(content=png, media_type="image/png", headers=_attachment(filename))
    raise HTTPException(status_code=409, detail="PNG export is only available for flowcharts and wireframes")


@app.get("/generations/{generation_id}/screens/{number}.txt")
def export_screen_text(generation_id: str, number: int) -> PlainTextResponse:
    record = _load_generation(generation_id)
    if record["kind"] != "wireframes":
        raise HTTPException(status_code=409, detail="Screen descriptions exist only for wireframes")
    try:
        item = get_screen(_screens(record), number)
    except WireframeError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    filename = screen_filename(str(item.get("screenName") or ""), number, kind="text")
    return PlainTextResponse(screen_text(item), headers=_attachment(filename))


@app.get("/generations/{generation_id}/preview")
async def preview(generation_id: str) -> Response:
    record = _load_generation(generation_id)
    if record["kind"] != "flowchart":
        raise HTTPException(status_code=409, detail="Preview is only available for flowcharts")
    effective = _effective_settings()
    mermaid = effective.get("mermaid") if isinstance(effective.get("mermaid"), dict) else {}
    svg, error = await render_flowchart_svg(
        str(record["payload"].get("mermaid_syntax") or ""),
        theme=str(mermaid.get("theme") or "default"),
        timeout_s=float(mermaid.get("timeout_s") or 30),
    )
    if svg is None:
        return JSONResponse(status_code=200, content={"svg": None, "error": error})
    return Response(content=svg, media_type="image/svg+xml")


@app.post("/export/pdf")
def export_markdown_pdf(req: ExportPdfRequest) -> Response:
    branding = _branding(_effective_settings())
    for key in ("header_left", "header_right", "watermark"):
        value = getattr(req, key)
        if value is not None:
            setattr(branding, key, value)
    if not req.markdown.strip():
        raise HTTPException(status_code=409, detail="Nothing to export: the document is empty")
    return _pdf_response(req.markdown, req.title or "document", branding)


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    if not config.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin settings are disabled; set DOCGEN_ADMIN_TOKEN")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, config.ADMIN_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid admin token")


@app.get("/admin/settings", response_model=AdminSettingsResponse)
def admin_get_settings(_: None = Depends(require_admin)) -> dict[str, Any]:
    try:
        return get_settings_bundle()
    except SettingsError as e:
        log.exception("Settings error")
        raise HTTPException(status_code=500, detail=str(e)) from e


@app.post("/admin/settings", response_model=AdminSettingsResponse)
def admin_update_settings(req: AdminSettingsUpdateRequest, _: None = Depends(require_admin)) -> dict[str, Any]:
    unknown = sorted(k for k in req.settings if k not in SEEDED_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown settings keys: {', '.join(unknown)}")
    try:
        effective = get_settings_bundle()["effective"]
        if "prompt_templates" in req.settings:
            templates = req.settings.get("prompt_templates")
            if not isinstance(templates, dict):
                raise HTTPException(status_code=400, detail="prompt_templates must be an object/dict")
            required_map = req.settings.get("required_placeholders") or effective.get("required_placeholders") or {}
            for name, tmpl in templates.items():
                if not isinstance(tmpl, str) or not tmpl.strip():
                    raise HTTPException(status_code=400, detail=f"prompt_templates['{name}'] must be a non-empty string")
                missing = [p for p in required_map.get(name, []) if f"{{{{{p}}}}}" not in tmpl]
                if missing:
                    raise HTTPException(
                        status_code=400,
                        detail=f"prompt_templates['{name}'] must include: " + ", ".join(f"{{{{{m}}}}}" for m in missing),
                    )
            # Partial updates keep the templates that were not sent.
            merged = dict(effective.get("prompt_templates") or {})
            merged.update(templates)
            req.settings["prompt_templates"] = merged
        return update_settings(req.settings)
    except SettingsError as e:
        log.exception("Settings error")
        raise HTTPException(status_code=500, detail=str(e)) from e
