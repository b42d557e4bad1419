"""
Shared fixtures for docgen tests.

The app database lives in a per-session temporary directory. Environment
overrides are applied *before* any docgen module is imported so that
config picks them up.
"""
from __future__ import annotations

import base64
import io
import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

_TMP = Path(tempfile.mkdtemp(prefix="docgen-tests-"))
os.environ["DOCGEN_APP_DB_PATH"] = str(_TMP / "app.sqlite")
os.environ["DOCGEN_ADMIN_TOKEN"] = "test-admin-token"
os.environ["DOCGEN_LLM_MODEL"] = "test-model"
os.environ["DOCGEN_FONT_DIR"] = str(_TMP / "no-fonts")

from docgen import app_db, config  # noqa: E402
from docgen.main import app  # noqa: E402
from docgen.settings import ensure_defaults  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def app_db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A fresh, seeded database for each test."""
    path = tmp_path / "app.sqlite"
    monkeypatch.setattr(config, "APP_DB_PATH", path)
    app_db.init_db()
    ensure_defaults()
    return path


@pytest_asyncio.fixture
async def client(app_db_path: Path) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app. ASGITransport does not run
    startup hooks, so the ``app_db_path`` fixture seeds the database instead.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def png_bytes(width: int = 40, height: int = 20, color: tuple[int, int, int] = (90, 140, 200)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_uri(width: int = 40, height: int = 20) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(width, height)).decode("ascii")
