from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from publisher.db.deps import get_session
from publisher.routers.deps import get_object_storage
from publisher.schemas.publish import LiveResponse, PromoteResponse
from publisher.security import require_worker_key
from publisher.services import live as live_service
from publisher.services.object_storage import ObjectStorage

router = APIRouter(tags=["live"])


@router.post(
    "/projects/{project_id}/versions/{version_id}/promote",
    response_model=PromoteResponse,
    dependencies=[Depends(require_worker_key)],
)
def promote_version(
    project_id: str,
    version_id: str,
    session: Session = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> PromoteResponse:
    try:
        result = live_service.promote_version(session, storage, project_id=project_id, version_id=version_id)
    except live_service.LiveResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return PromoteResponse(success=True, versionTag=result.version_tag, path=result.path)


@router.get("/live/{slug}", response_model=LiveResponse)
def resolve_live(
    slug: str,
    session: Session = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> LiveResponse:
    try:
        target = live_service.resolve_live(session, storage, slug=slug)
    except live_service.LiveResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return LiveResponse(
        slug=target.slug,
        versionTag=target.version_tag,
        path=target.path,
        entrypoint=target.entrypoint,
        source=target.source,
    )
