from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from . import app_db
from .config import REPO_ROOT
from .logging_utils import get_logger

log = get_logger(__name__)

DEFAULT_SETTINGS_PATH = REPO_ROOT / "backend" / "default_settings.json"

SEEDED_KEYS = ("prompt_templates", "required_placeholders", "llm", "branding", "mermaid")


class SettingsError(RuntimeError):
    pass


def _read_json(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SettingsError(f"Failed to read settings file {path}: {e}") from e


def load_defaults() -> dict[str, Any]:
    if not DEFAULT_SETTINGS_PATH.exists():
        raise SettingsError(f"Default settings file not found: {DEFAULT_SETTINGS_PATH}")

    raw = _read_json(DEFAULT_SETTINGS_PATH)

    prompt_files = raw.get("prompt_template_files")
    if not isinstance(prompt_files, dict) or not prompt_files:
        raise SettingsError("default_settings.json missing 'prompt_template_files'")

    templates: dict[str, str] = {}
    for name, rel_path in prompt_files.items():
        if not isinstance(name, str) or not name.strip():
            continue
        if not isinstance(rel_path, str) or not rel_path.strip():
            continue
        p = (REPO_ROOT / rel_path).resolve()
        if not p.exists():
            raise SettingsError(f"Prompt template file not found: {p}")
        templates[name.strip()] = p.read_text(encoding="utf-8")

    defaults = {k: v for k, v in raw.items() if k != "prompt_template_files"}
    defaults["prompt_templates"] = templates
    return defaults


def get_settings_bundle() -> dict[str, Any]:
    defaults = load_defaults()
    db_settings = app_db.list_settings()

    effective: dict[str, Any] = {}
    for k, v in defaults.items():
        effective[k] = v
    for k, v in db_settings.items():
        effective[k] = v

    return {"defaults": defaults, "settings": db_settings, "effective": effective}


def get_effective() -> dict[str, Any]:
    return get_settings_bundle()["effective"]


def _merge_missing(dst: Any, src: Any) -> tuple[Any, bool]:
    if not isinstance(dst, dict) or not isinstance(src, dict):
        return dst, False
    changed = False
    out = dict(dst)
    for k, v in src.items():
        if k not in out:
            out[k] = v
            changed = True
        else:
            merged, did = _merge_missing(out[k], v)
            if did:
                out[k] = merged
                changed = True
    return out, changed


def ensure_defaults() -> None:
    bundle = get_settings_bundle()
    defaults: dict[str, Any] = bundle["defaults"]
    settings: dict[str, Any] = bundle["settings"]

    to_set: dict[str, Any] = {}

    # Only seed keys that are missing.
    for key in SEEDED_KEYS:
        if key not in settings and key in defaults:
            to_set[key] = defaults[key]

    # Backfill newly added nested defaults without overwriting user values.
    for key in SEEDED_KEYS:
        if key in settings and key in defaults:
            merged, changed = _merge_missing(settings.get(key), defaults.get(key))
            if changed:
                to_set[key] = merged

    if to_set:
        log.info("Seeding default settings keys: %s", ", ".join(sorted(to_set.keys())))
        app_db.set_settings(to_set)


def update_settings(new_values: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(k for k in new_values if k not in SEEDED_KEYS)
    if unknown:
        raise SettingsError(f"Unknown settings keys: {', '.join(unknown)}")
    app_db.set_settings(new_values)
    return get_settings_bundle()


def prompt_template(name: str, effective: dict[str, Any] | None = None) -> tuple[str, list[str]]:
    """Effective template text for ``name`` and its required placeholders."""
    if effective is None:
        effective = get_effective()
    templates = effective.get("prompt_templates") or {}
    template = templates.get(name) if isinstance(templates, dict) else None
    if not isinstance(template, str) or not template.strip():
        raise SettingsError(f"No prompt template configured for '{name}'")
    required = (effective.get("required_placeholders") or {}).get(name) or []
    return template, [str(p) for p in required]
