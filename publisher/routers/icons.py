from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from publisher.config import settings
from publisher.routers.deps import get_image_http_client, get_object_storage
from publisher.schemas.publish import IconBackfillItem, IconBackfillResponse
from publisher.security import require_worker_key
from publisher.services.icons import IconGenerated
from publisher.services.object_storage import ObjectStorage
from publisher.services.publish_runner import backfill_missing_icons

router = APIRouter(prefix="/icons", tags=["icons"])


@router.post(
    "/backfill",
    response_model=IconBackfillResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_worker_key)],
)
async def backfill_icons(
    storage: ObjectStorage = Depends(get_object_storage),
    http_client: httpx.AsyncClient = Depends(get_image_http_client),
) -> IconBackfillResponse:
    api_key = settings.GEMINI_IMAGE_API_KEY
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="GEMINI_IMAGE_API_KEY not configured",
        )
    results = await backfill_missing_icons(storage, api_key=api_key, http_client=http_client)
    items = [
        IconBackfillItem(
            projectId=item.project_id,
            name=item.name,
            success=item.result.success,
            url=item.result.url if isinstance(item.result, IconGenerated) else None,
            error=None if isinstance(item.result, IconGenerated) else item.result.error,
        )
        for item in results
    ]
    return IconBackfillResponse(count=len(items), results=items)
