from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import config
from .logging_utils import get_logger

log = get_logger(__name__)

GENERATION_KINDS = ("document", "flowchart", "wireframes")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect(db_path: Path | None = None) -> sqlite3.Connection:
    db_path = db_path or config.APP_DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def init_db() -> None:
    conn = _connect()
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value_json TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS generations (
              generation_id TEXT PRIMARY KEY,
              kind TEXT NOT NULL CHECK(kind IN ('document','flowchart','wireframes')),
              title TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_generations_kind_created
              ON generations(kind, created_at);
            """
        )
        conn.commit()
    finally:
        conn.close()


def _generation_row(row: sqlite3.Row) -> dict[str, Any]:
    out = dict(row)
    out["payload"] = json.loads(out.pop("payload_json") or "{}")
    return out


def insert_generation(*, kind: str, title: str, payload: dict[str, Any]) -> dict[str, Any]:
    if kind not in GENERATION_KINDS:
        raise ValueError(f"Unknown generation kind: {kind}")
    generation_id = str(uuid.uuid4())
    created_at = _utc_now()

    conn = _connect()
    try:
        conn.execute(
            "INSERT INTO generations(generation_id, kind, title, payload_json, created_at) VALUES (?,?,?,?,?)",
            (generation_id, kind, title, json.dumps(payload, ensure_ascii=False), created_at),
        )
        conn.commit()
    finally:
        conn.close()

    log.info("Stored %s generation %s", kind, generation_id)
    return {
        "generation_id": generation_id,
        "kind": kind,
        "title": title,
        "payload": payload,
        "created_at": created_at,
    }


def get_generation(generation_id: str) -> dict[str, Any] | None:
    conn = _connect()
    try:
        row = conn.execute(
            "SELECT generation_id, kind, title, payload_json, created_at FROM generations WHERE generation_id = ?",
            (generation_id,),
        ).fetchone()
    finally:
        conn.close()
    return _generation_row(row) if row else None


def list_generations(*, kind: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
    """Newest first, without payloads."""
    where, params = ("WHERE kind = ?", [kind]) if kind else ("", [])
    conn = _connect()
    try:
        rows = conn.execute(
            f"""
            SELECT generation_id, kind, title, created_at
            FROM generations {where}
            ORDER BY created_at DESC, rowid DESC LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
    finally:
        conn.close()
    return [dict(r) for r in rows]


def list_settings() -> dict[str, Any]:
    conn = _connect()
    try:
        rows = conn.execute("SELECT key, value_json FROM settings ORDER BY key ASC").fetchall()
    finally:
        conn.close()
    out: dict[str, Any] = {}
    for r in rows:
        try:
            out[r["key"]] = json.loads(r["value_json"])
        except ValueError:
            out[r["key"]] = r["value_json"]
    return out


def set_settings(values: dict[str, Any]) -> None:
    now = _utc_now()
    rows = [(k, json.dumps(v, ensure_ascii=False), now, now) for k, v in values.items()]
    conn = _connect()
    try:
        conn.executemany(
            """
            INSERT INTO settings(key, value_json, created_at, updated_at)
            VALUES (?,?,?,?)
            ON CONFLICT(key) DO UPDATE SET value_json=excluded.value_json, updated_at=excluded.updated_at
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()
