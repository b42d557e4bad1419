"""End-to-end tests for the HTTP API with the model and renderer stubbed out."""
import json
import threading

import httpx
import pytest
from httpx import AsyncClient

from docgen import config, diagrams, llm, main
from tests.conftest import ADMIN_HEADERS, png_bytes, png_data_uri

real_generate_image = llm.generate_image

BRD_REPLY = (
    "# Ride Share App\n\n## Goals\n\nFast pickups.\n\n## Scope\n\nOne city.\n\n"
    "## Functional Requirements\n\n1. Request a trip.\n\n## Non-Functional Requirements\n\n- Uptime.\n"
)
SCREENS_REPLY = json.dumps(
    {
        "wireframes": [
            {"screenName": "Login Screen", "description": "Email and password."},
            {"screenName": "Checkout", "description": "Fare and pay button."},
        ]
    }
)


@pytest.fixture
def model(monkeypatch):
    """Stub chat and image calls; tests set ``model.reply``."""

    class Stub:
        reply: object = BRD_REPLY

    stub = Stub()

    async def fake_chat(messages, **kwargs):
        if isinstance(stub.reply, Exception):
            raise stub.reply
        return stub.reply

    async def fake_image(prompt, **kwargs):
        return png_data_uri()

    monkeypatch.setattr(llm, "chat_completion", fake_chat)
    monkeypatch.setattr(llm, "generate_image", fake_image)
    return stub


@pytest.fixture
def renderer(monkeypatch):
    """Stub the Mermaid render service; records the kinds requested."""
    kinds: list[str] = []

    async def fake_fetch(syntax, *, kind="img", **kwargs):
        kinds.append(kind)
        return b"<svg></svg>" if kind == "svg" else png_bytes(300, 120)

    monkeypatch.setattr(diagrams, "fetch_rendered", fake_fetch)
    return kinds


async def _generate(client: AsyncClient, kind: str, body: dict) -> dict:
    resp = await client.post(f"/generate/{kind}", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Health and uploads
# ---------------------------------------------------------------------------

async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["settings_ok"] is True
    assert data["admin_enabled"] is True


async def test_upload_encode_markdown(client: AsyncClient):
    resp = await client.post(
        "/uploads/encode", files={"file": ("notes.md", b"# Notes", "application/octet-stream")}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["mime"] == "text/markdown"
    assert data["size"] == 7
    assert data["data_uri"].startswith("data:text/markdown;base64,")


async def test_upload_unsupported_type(client: AsyncClient):
    resp = await client.post("/uploads/encode", files={"file": ("photo.png", png_bytes(), "image/png")})
    assert resp.status_code == 422
    assert "Unsupported file type" in resp.json()["detail"]


async def test_upload_too_large(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 3)
    resp = await client.post("/uploads/encode", files={"file": ("notes.txt", b"too long", "text/plain")})
    assert resp.status_code == 413


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

async def test_validation_errors_are_keyed_by_field(client: AsyncClient, model):
    resp = await client.post("/generate/document", json={"title": "R", "document_type": "XYZ"})
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"] == "validation_failed"
    assert set(data["detail"]) == {"title", "document_type"}


async def test_wireframes_require_description(client: AsyncClient, model):
    resp = await client.post("/generate/wireframes", json={"title": "Ride Share", "description": "   "})
    assert resp.status_code == 422
    assert "description" in resp.json()["detail"]


async def test_bad_upload_in_generation_request(client: AsyncClient, model):
    resp = await client.post("/generate/document", json={"title": "Ride Share", "uploaded_file": "nope"})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

async def test_document_generate_fetch_and_export(client: AsyncClient, model):
    created = await _generate(client, "document", {"title": "Ride Share App", "document_type": "BRD"})
    assert created["kind"] == "document"
    assert created["warnings"] == []
    gid = created["generation_id"]

    fetched = (await client.get(f"/generations/{gid}")).json()
    assert fetched["payload"]["markdown"] == created["payload"]["markdown"]

    md = await client.get(f"/generations/{gid}/export.md")
    assert md.status_code == 200
    assert md.headers["content-type"].startswith("text/markdown")
    assert 'filename="ride_share_app.md"' in md.headers["content-disposition"]
    assert md.text.startswith("# Ride Share App")

    pdf = await client.get(f"/generations/{gid}/export.pdf")
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    png = await client.get(f"/generations/{gid}/export.png")
    assert png.status_code == 409


async def test_document_warnings_are_returned(client: AsyncClient, model):
    model.reply = "# Ride Share App\n\n## Goals\n\nx\n"
    created = await _generate(client, "document", {"title": "Ride Share App"})
    assert "Missing section: scope" in created["warnings"]


async def test_model_failure_is_502(client: AsyncClient, model):
    model.reply = llm.LLMError("connection refused")
    resp = await client.post("/generate/document", json={"title": "Ride Share App"})
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Failed to generate document. connection refused"


async def test_unknown_generation_is_404(client: AsyncClient):
    for path in ("", "/export.pdf", "/export.md", "/export.png", "/preview", "/screens/1.txt"):
        resp = await client.get(f"/generations/does-not-exist{path}")
        assert resp.status_code == 404, path


async def test_list_generations_newest_first(client: AsyncClient, model):
    first = await _generate(client, "document", {"title": "First Doc"})
    second = await _generate(client, "document", {"title": "Second Doc"})
    model.reply = json.dumps({"mermaidSyntax": "graph TD\n  A[Request] --> B[Match]"})
    chart = await _generate(client, "flowchart", {"title": "Flow"})

    listed = (await client.get("/generations")).json()
    assert [g["generation_id"] for g in listed] == [
        chart["generation_id"],
        second["generation_id"],
        first["generation_id"],
    ]
    assert "payload" not in listed[0]

    docs = (await client.get("/generations", params={"kind": "document", "limit": 1})).json()
    assert [g["title"] for g in docs] == ["Second Doc"]
    assert (await client.get("/generations", params={"kind": "poster"})).status_code == 422
    assert (await client.get("/generations", params={"limit": 0})).status_code == 422


# ---------------------------------------------------------------------------
# Flowcharts
# ---------------------------------------------------------------------------

async def test_flowchart_png_pdf_and_preview(client: AsyncClient, model, renderer):
    model.reply = json.dumps({"mermaidSyntax": "graph TD\n  A[Request] --> B[Match]"})
    created = await _generate(client, "flowchart", {"title": "Trip Flow"})
    gid = created["generation_id"]
    assert created["payload"]["syntax_error"] is None

    png = await client.get(f"/generations/{gid}/export.png")
    assert png.status_code == 200
    assert png.content.startswith(b"\x89PNG")
    assert "x-diagram-error" not in png.headers
    assert 'filename="trip_flow.png"' in png.headers["content-disposition"]

    pdf = await client.get(f"/generations/{gid}/export.pdf")
    assert pdf.content.startswith(b"%PDF")

    preview = await client.get(f"/generations/{gid}/preview")
    assert preview.headers["content-type"].startswith("image/svg+xml")
    assert preview.text == "<svg></svg>"
    assert renderer == ["img", "img", "svg"]

    assert (await client.get(f"/generations/{gid}/export.md")).status_code == 409


async def test_invalid_flowchart_exports_placeholder(client: AsyncClient, model, renderer):
    model.reply = json.dumps({"mermaidSyntax": "graph TD\n  A[Request --> B"})
    created = await _generate(client, "flowchart", {"title": "Trip Flow"})
    gid = created["generation_id"]
    assert "Unclosed" in created["payload"]["syntax_error"]

    png = await client.get(f"/generations/{gid}/export.png")
    assert png.status_code == 200
    assert "Unclosed" in png.headers["x-diagram-error"]

    pdf = await client.get(f"/generations/{gid}/export.pdf")
    assert pdf.content.startswith(b"%PDF")

    preview = await client.get(f"/generations/{gid}/preview")
    assert preview.json()["svg"] is None
    assert "Unclosed" in preview.json()["error"]
    assert renderer == []


# ---------------------------------------------------------------------------
# Wireframes
# ---------------------------------------------------------------------------

async def test_wireframe_exports(client: AsyncClient, model):
    model.reply = SCREENS_REPLY
    created = await _generate(
        client, "wireframes", {"title": "Ride Share", "description": "Booking app", "style": "Clean"}
    )
    gid = created["generation_id"]
    assert len(created["payload"]["wireframes"]) == 2

    png = await client.get(f"/generations/{gid}/export.png", params={"screen": 1})
    assert png.status_code == 200
    assert png.content.startswith(b"\x89PNG")
    assert 'filename="login_screen_1_wireframe.png"' in png.headers["content-disposition"]

    assert (await client.get(f"/generations/{gid}/export.png")).status_code == 422
    assert (await client.get(f"/generations/{gid}/export.png", params={"screen": 0})).status_code == 422
    assert (await client.get(f"/generations/{gid}/export.png", params={"screen": 3})).status_code == 404

    text = await client.get(f"/generations/{gid}/screens/2.txt")
    assert text.status_code == 200
    assert text.text == "Checkout\n\nFare and pay button.\n"
    assert 'filename="checkout_2_desc.txt"' in text.headers["content-disposition"]
    assert (await client.get(f"/generations/{gid}/screens/9.txt")).status_code == 404

    pdf = await client.get(f"/generations/{gid}/export.pdf")
    assert pdf.content.startswith(b"%PDF")
    assert (await client.get(f"/generations/{gid}/export.md")).status_code == 409
    assert (await client.get(f"/generations/{gid}/preview")).status_code == 409


async def test_exports_render_off_the_event_loop(client: AsyncClient, model, monkeypatch):
    model.reply = SCREENS_REPLY
    created = await _generate(client, "wireframes", {"title": "Ride Share", "description": "Booking app"})
    gid = created["generation_id"]
    threads: dict[str, threading.Thread] = {}
    real_pdf, real_png = main.render_markdown_to_pdf, main.screen_png

    def pdf_recorder(*args, **kwargs):
        threads["pdf"] = threading.current_thread()
        return real_pdf(*args, **kwargs)

    def png_recorder(*args, **kwargs):
        threads["png"] = threading.current_thread()
        return real_png(*args, **kwargs)

    monkeypatch.setattr(main, "render_markdown_to_pdf", pdf_recorder)
    monkeypatch.setattr(main, "screen_png", png_recorder)
    assert (await client.get(f"/generations/{gid}/export.pdf")).status_code == 200
    assert (await client.get(f"/generations/{gid}/export.png", params={"screen": 1})).status_code == 200
    assert set(threads) == {"pdf", "png"}
    assert all(t is not threading.main_thread() for t in threads.values())


async def test_failed_wireframe_image_stores_nothing(client: AsyncClient, model, monkeypatch):
    model.reply = SCREENS_REPLY

    async def broken_image(prompt, **kwargs):
        raise llm.LLMError("quota exceeded")

    monkeypatch.setattr(llm, "generate_image", broken_image)
    resp = await client.post("/generate/wireframes", json={"title": "Ride Share", "description": "Booking app"})
    assert resp.status_code == 502
    assert "Failed to generate image for screen" in resp.json()["detail"]


@pytest.mark.parametrize("body", [{"data": ["abc"]}, [{"b64_json": "abc"}], {"data": []}])
async def test_malformed_image_response_is_502(client: AsyncClient, model, monkeypatch, body):
    model.reply = SCREENS_REPLY

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    async def image_via_mock(prompt, **kwargs):
        return await real_generate_image(prompt, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(llm, "generate_image", image_via_mock)
    resp = await client.post("/generate/wireframes", json={"title": "Ride Share", "description": "Booking app"})
    assert resp.status_code == 502
    assert "Unexpected image response shape" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Ad-hoc PDF export
# ---------------------------------------------------------------------------

async def test_export_arbitrary_markdown(client: AsyncClient):
    resp = await client.post(
        "/export/pdf", json={"markdown": "# Notes\n\n- one\n- two\n", "title": "My Notes", "watermark": "DRAFT"}
    )
    assert resp.status_code == 200
    assert resp.content.startswith(b"%PDF")
    assert 'filename="my_notes.pdf"' in resp.headers["content-disposition"]


async def test_export_empty_markdown_is_409(client: AsyncClient):
    resp = await client.post("/export/pdf", json={"markdown": "   "})
    assert resp.status_code == 409


# ---------------------------------------------------------------------------
# Admin settings
# ---------------------------------------------------------------------------

async def test_admin_requires_token(client: AsyncClient):
    assert (await client.get("/admin/settings")).status_code == 401
    assert (await client.get("/admin/settings", headers={"X-Admin-Token": "wrong"})).status_code == 401


async def test_admin_disabled_without_configured_token(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", None)
    resp = await client.get("/admin/settings", headers=ADMIN_HEADERS)
    assert resp.status_code == 403


async def test_admin_get_settings(client: AsyncClient):
    resp = await client.get("/admin/settings", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert set(data) == {"defaults", "settings", "effective"}
    assert "brd" in data["effective"]["prompt_templates"]


async def test_admin_rejects_unknown_keys(client: AsyncClient):
    resp = await client.post("/admin/settings", headers=ADMIN_HEADERS, json={"settings": {"nope": 1}})
    assert resp.status_code == 400


async def test_admin_rejects_template_without_placeholders(client: AsyncClient):
    resp = await client.post(
        "/admin/settings", headers=ADMIN_HEADERS, json={"settings": {"prompt_templates": {"brd": "Write a BRD."}}}
    )
    assert resp.status_code == 400
    assert "{{title}}" in resp.json()["detail"]


async def test_admin_partial_template_update(client: AsyncClient, model):
    before = (await client.get("/admin/settings", headers=ADMIN_HEADERS)).json()["effective"]["prompt_templates"]
    new_brd = "BRD for {{title}}: {{description}}"
    resp = await client.post(
        "/admin/settings", headers=ADMIN_HEADERS, json={"settings": {"prompt_templates": {"brd": new_brd}}}
    )
    assert resp.status_code == 200
    templates = resp.json()["effective"]["prompt_templates"]
    assert templates["brd"] == new_brd
    assert templates["frs"] == before["frs"]

    created = await _generate(client, "document", {"title": "Ride Share App"})
    assert created["kind"] == "document"


async def test_admin_branding_applies_to_exports(client: AsyncClient, model):
    resp = await client.post(
        "/admin/settings",
        headers=ADMIN_HEADERS,
        json={"settings": {"branding": {"organization": "Acme", "header_left": "Acme", "footer": "Internal"}}},
    )
    assert resp.status_code == 200
    assert resp.json()["effective"]["branding"]["organization"] == "Acme"
    created = await _generate(client, "document", {"title": "Ride Share App"})
    pdf = await client.get(f"/generations/{created['generation_id']}/export.pdf")
    assert pdf.content.startswith(b"%PDF")
