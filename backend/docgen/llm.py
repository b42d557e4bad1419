from __future__ import annotations

import asyncio
import base64
from typing import Any, Awaitable, Iterable, TypeVar

import httpx

from . import config
from .logging_utils import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class LLMError(RuntimeError):
    pass


_model_cache_lock = asyncio.Lock()
_cached_model_id: str | None = None


def _headers() -> dict[str, str]:
    if config.LLM_API_KEY:
        return {"Authorization": f"Bearer {config.LLM_API_KEY}"}
    return {}


def _error_detail(e: httpx.HTTPError) -> str:
    response = getattr(e, "response", None)
    if response is None:
        return ""
    try:
        return response.text[:500]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""


async def _detect_model_id(client: httpx.AsyncClient, base_url: str) -> str:
    resp = await client.get(f"{base_url}/v1/models", headers=_headers())
    resp.raise_for_status()
    try:
        data = resp.json()
    except ValueError as e:
        raise LLMError(f"/v1/models returned invalid JSON: {e}") from e
    models = data.get("data") if isinstance(data, dict) else None
    if not isinstance(models, list):
        raise LLMError("Unexpected /v1/models response shape; set DOCGEN_LLM_MODEL.")
    if not models:
        raise LLMError("The LLM endpoint returned no models; set DOCGEN_LLM_MODEL.")
    for m in models:
        if not isinstance(m, dict):
            continue
        model_id = str(m.get("id") or "").strip()
        if not model_id:
            continue
        low = model_id.lower()
        if "embedding" in low or "image" in low or "whisper" in low:
            continue
        return model_id
    raise LLMError("No chat model found in /v1/models. Set DOCGEN_LLM_MODEL.")


async def get_model_id(base_url: str | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> str:
    global _cached_model_id

    if config.LLM_MODEL:
        return config.LLM_MODEL

    if _cached_model_id:
        return _cached_model_id

    async with _model_cache_lock:
        if _cached_model_id:
            return _cached_model_id
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            try:
                _cached_model_id = await _detect_model_id(client, base_url or config.LLM_BASE_URL)
            except httpx.HTTPError as e:
                raise LLMError(f"Model discovery failed ({type(e).__name__}): {e}") from e
            return _cached_model_id


def reset_model_cache() -> None:
    global _cached_model_id
    _cached_model_id = None


async def chat_completion(
    messages: list[dict[str, Any]],
    base_url: str | None = None,
    temperature: float = 0.2,
    max_tokens: int = 4000,
    model: str | None = None,
    timeout_s: float = 120.0,
    response_format: dict[str, Any] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    base_url = base_url or config.LLM_BASE_URL
    model_id = str(model).strip() if isinstance(model, str) and model.strip() else None
    if not model_id:
        model_id = await get_model_id(base_url, transport=transport)
    payload: dict[str, Any] = {
        "model": model_id,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": False,
    }
    if response_format:
        payload["response_format"] = response_format
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport) as client:
        try:
            resp = await client.post(f"{base_url}/v1/chat/completions", json=payload, headers=_headers())
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM request timed out after {timeout_s:.1f}s ({type(e).__name__}).") from e
        except httpx.HTTPError as e:
            msg = str(e).strip() or repr(e)
            raise LLMError(f"LLM request failed ({type(e).__name__}): {msg} {_error_detail(e)}".strip()) from e

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected LLM response shape: {resp.text[:300]}") from e
    if isinstance(content, list):
        # Some gateways return content parts instead of a string.
        content = "".join(str(p.get("text") or "") for p in content if isinstance(p, dict))
    return str(content or "")


def _image_item(data: Any) -> dict[str, Any]:
    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise LLMError(f"Unexpected image response shape: {str(data)[:200]}")
    return items[0]


async def generate_image(
    prompt: str,
    *,
    base_url: str | None = None,
    model: str | None = None,
    size: str = "1024x1024",
    timeout_s: float = 180.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Generate one image and return it as a ``data:image/png;base64,...`` URI."""
    base_url = base_url or config.LLM_BASE_URL
    payload = {"model": model or config.IMAGE_MODEL, "prompt": prompt, "n": 1, "size": size}
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport) as client:
        try:
            resp = await client.post(f"{base_url}/v1/images/generations", json=payload, headers=_headers())
            resp.raise_for_status()
            item = _image_item(resp.json())
            b64 = item.get("b64_json")
            if b64:
                return f"data:image/png;base64,{b64}"
            url = item.get("url")
            if not url:
                raise LLMError("Image response contained neither b64_json nor url.")
            img = await client.get(url)
            img.raise_for_status()
        except httpx.TimeoutException as e:
            raise LLMError(f"Image request timed out after {timeout_s:.1f}s ({type(e).__name__}).") from e
        except httpx.HTTPError as e:
            msg = str(e).strip() or repr(e)
            raise LLMError(f"Image request failed ({type(e).__name__}): {msg} {_error_detail(e)}".strip()) from e
        except ValueError as e:
            raise LLMError(f"Unexpected image response: {e}") from e
    mime = img.headers.get("content-type", "image/png").split(";", 1)[0].strip() or "image/png"
    return f"data:{mime};base64,{base64.b64encode(img.content).decode('ascii')}"


async def gather_all(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Run awaitables concurrently; the first failure cancels the rest and is raised."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        # Also runs when the caller is cancelled, so no child outlives it.
        pending = [t for t in tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    # Read every exception so none is reported as never retrieved.
    errors = [t.exception() for t in tasks if not t.cancelled() and t.exception() is not None]
    if errors:
        raise errors[0]  # type: ignore[misc]
    return [t.result() for t in tasks]
