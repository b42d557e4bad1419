from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


REPO_ROOT = _repo_root()

BACKEND_DIR = REPO_ROOT / "backend"
PROMPTS_DIR = BACKEND_DIR / "prompts"

APP_DB_PATH = Path(os.getenv("DOCGEN_APP_DB_PATH", str(BACKEND_DIR / "data" / "app.sqlite")))

# Any OpenAI-compatible endpoint (LM Studio, vLLM, a hosted gateway).
LLM_BASE_URL = os.getenv("DOCGEN_LLM_BASE_URL", "http://localhost:1234").rstrip("/")
LLM_API_KEY = os.getenv("DOCGEN_LLM_API_KEY") or None
LLM_MODEL = os.getenv("DOCGEN_LLM_MODEL") or None
# Used instead of LLM_MODEL when the request carries an uploaded file.
LLM_FILE_MODEL = os.getenv("DOCGEN_LLM_FILE_MODEL") or None
IMAGE_MODEL = os.getenv("DOCGEN_IMAGE_MODEL", "gpt-image-1")

MERMAID_RENDER_URL = os.getenv("DOCGEN_MERMAID_URL", "https://mermaid.ink").rstrip("/")

MAX_UPLOAD_BYTES = int(os.getenv("DOCGEN_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

ADMIN_TOKEN = os.getenv("DOCGEN_ADMIN_TOKEN") or None

FONT_DIR = Path(os.getenv("DOCGEN_FONT_DIR", str(BACKEND_DIR / "assets" / "fonts")))
