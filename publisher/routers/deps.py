from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache

import httpx

from publisher.config import settings
from publisher.services.object_storage import ObjectStorage


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    return ObjectStorage()


async def get_image_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.ICON_GENERATION_TIMEOUT_SECONDS) as client:
        yield client
