from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from publisher.db.deps import get_session
from publisher.db.repositories.projects import ProjectsRepository
from publisher.db.repositories.publish_jobs import PublishJobsRepository
from publisher.routers.deps import get_image_http_client, get_object_storage
from publisher.schemas.publish import (
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    RunRequest,
    RunResponse,
)
from publisher.security import require_worker_key
from publisher.services.object_storage import ObjectStorage
from publisher.services.publish_runner import PublishRunner

logger = logging.getLogger(__name__)

METHOD_NOT_ALLOWED = "Method not allowed"

router = APIRouter(tags=["publish"])


def get_publish_runner(
    storage: ObjectStorage = Depends(get_object_storage),
    http_client: httpx.AsyncClient = Depends(get_image_http_client),
) -> PublishRunner:
    return PublishRunner(storage=storage, http_client=http_client)


async def _read_run_request(request: Request) -> RunRequest:
    # A missing or malformed body means "claim the oldest queued job".
    raw = await request.body()
    if not raw.strip():
        return RunRequest()
    try:
        return RunRequest.model_validate_json(raw)
    except ValidationError:
        logger.warning("publish.run_body_ignored", extra={"size": len(raw)})
        return RunRequest()


@router.post(
    "/",
    response_model=RunResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_worker_key)],
)
async def run_publish_job(
    request: Request,
    runner: PublishRunner = Depends(get_publish_runner),
) -> RunResponse:
    body = await _read_run_request(request)
    outcome = await runner.run(body.jobId)
    return RunResponse(success=True, jobId=outcome.job_id, message=outcome.message)


@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def reject_run_method() -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={"success": False, "error": METHOD_NOT_ALLOWED},
        headers={"Allow": "POST"},
    )


@router.post(
    "/jobs",
    response_model=EnqueueResponse,
    dependencies=[Depends(require_worker_key)],
)
def enqueue_publish_job(
    body: EnqueueRequest,
    session: Session = Depends(get_session),
) -> EnqueueResponse:
    project = ProjectsRepository(session).get(body.projectId)
    # Jobs only run against the owner's source tree.
    if project is None or project.user_id != body.userId:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    job = PublishJobsRepository(session).enqueue(
        project_id=project.id,
        user_id=project.user_id,
        message=f"Queued for {body.target.value}",
    )
    logger.info("publish.job_enqueued", extra={"job_id": job.id, "project_id": project.id})
    return EnqueueResponse(success=True, jobId=job.id)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    dependencies=[Depends(require_worker_key)],
)
def get_publish_job(job_id: str, session: Session = Depends(get_session)) -> JobStatusResponse:
    job = PublishJobsRepository(session).get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobStatusResponse(
        id=job.id,
        projectId=job.project_id,
        status=job.status,
        progress=job.progress,
        message=job.message,
        logUrl=job.log_url,
        versionId=job.version_id,
        attempts=job.attempts,
        createdAt=job.created_at,
    )
