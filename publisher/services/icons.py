from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

import httpx

from publisher.config import settings
from publisher.services.object_storage import ObjectStorage, ObjectStorageError

logger = logging.getLogger(__name__)

ICON_STYLE = ", ".join(
    [
        "iOS app icon style, symbolic abstract design",
        "bold geometric shapes, clean minimal composition",
        "smooth gradient background, no text, no borders",
        "professional glossy finish, centered focal element",
        "Apple design language, premium mobile quality",
        "single bold color palette with subtle shading",
    ]
)

TIMEOUT_ERROR = "Icon generation timed out"
NO_IMAGE_ERROR = "No image generated"


class IconGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class IconGenerated:
    url: str
    success: ClassVar[bool] = True


@dataclass(frozen=True)
class IconFailed:
    error: str
    timed_out: bool = False
    success: ClassVar[bool] = False


IconResult = Union[IconGenerated, IconFailed]


def build_icon_prompt(name: Optional[str], description: Optional[str]) -> str:
    concept = ". ".join(part.strip() for part in (name, description) if part and part.strip())
    return f"{ICON_STYLE}, game concept: {concept}" if concept else ICON_STYLE


def extract_first_inline_image(response_json: Any) -> tuple[bytes, str]:
    if not isinstance(response_json, dict):
        raise IconGenerationError(NO_IMAGE_ERROR)
    candidates = response_json.get("candidates") or []
    if not isinstance(candidates, list):
        raise IconGenerationError(NO_IMAGE_ERROR)
    for cand in candidates:
        content = cand.get("content") if isinstance(cand, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if not isinstance(inline, dict):
                continue
            data = inline.get("data")
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            if isinstance(data, str) and data:
                try:
                    return base64.b64decode(data, validate=True), str(mime_type)
                except (binascii.Error, ValueError) as exc:
                    raise IconGenerationError(f"Invalid image payload: {exc}") from exc
    raise IconGenerationError(NO_IMAGE_ERROR)


def icon_key(user_id: str, project_id: str, mime_type: str, *, now_ms: int | None = None) -> str:
    extension = "png" if "png" in mime_type else "jpg"
    stamp = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    return f"{user_id}/{project_id}/icons/app-icon-{stamp}.{extension}"


async def _request_icon(client: httpx.AsyncClient, *, prompt: str, api_key: str) -> httpx.Response:
    url = f"{settings.GEMINI_API_BASE_URL.rstrip('/')}/models/{settings.GEMINI_IMAGE_MODEL}:generateContent"
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseModalities": ["IMAGE"],
            "imageConfig": {"aspectRatio": "1:1", "imageSize": "1K"},
        },
    }
    return await client.post(
        url,
        headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
        json=payload,
    )


async def generate_app_icon(
    storage: ObjectStorage,
    *,
    project_id: str,
    user_id: str,
    name: Optional[str],
    description: Optional[str],
    api_key: str,
    http_client: httpx.AsyncClient | None = None,
    timeout_seconds: float | None = None,
) -> IconResult:
    """
    Generate an app icon and upload it to the public bucket.

    Never raises: every failure, including the hard timeout, comes back as IconFailed.
    """
    deadline = float(timeout_seconds if timeout_seconds is not None else settings.ICON_GENERATION_TIMEOUT_SECONDS)
    prompt = build_icon_prompt(name, description)

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=deadline)
    try:
        try:
            response = await asyncio.wait_for(_request_icon(client, prompt=prompt, api_key=api_key), timeout=deadline)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return IconFailed(error=TIMEOUT_ERROR, timed_out=True)
        except httpx.HTTPError as exc:
            return IconFailed(error=f"Request failed: {exc}")

        if not response.is_success:
            return IconFailed(error=f"API error: {response.status_code}")

        try:
            image_bytes, mime_type = extract_first_inline_image(response.json())
        except ValueError:
            return IconFailed(error="Invalid API response")
        except IconGenerationError as exc:
            return IconFailed(error=str(exc))

        key = icon_key(user_id, project_id, mime_type)
        try:
            await asyncio.to_thread(
                storage.upload,
                bucket=settings.PUBLISH_BUCKET,
                key=key,
                data=image_bytes,
                content_type=mime_type,
            )
        except ObjectStorageError as exc:
            return IconFailed(error=f"Upload failed: {exc}")
        return IconGenerated(url=storage.public_url(bucket=settings.PUBLISH_BUCKET, key=key))
    except Exception as exc:  # noqa: BLE001 - icon generation must never fail its caller
        logger.exception("icons.unexpected_error", extra={"project_id": project_id})
        return IconFailed(error=str(exc) or type(exc).__name__)
    finally:
        if owns_client:
            await client.aclose()
