from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from publisher.config import settings
from publisher.db.base import SessionLocal, session_scope
from publisher.db.enums import PublishJobStatusEnum
from publisher.db.models import Project, PublishJob, PublishVersion
from publisher.db.repositories.projects import ProjectsRepository
from publisher.db.repositories.publish_jobs import PublishJobsRepository
from publisher.db.repositories.publish_versions import PublishVersionsRepository
from publisher.schemas.publish import Manifest, ManifestFileModel
from publisher.services import icons
from publisher.services.fallback import BuildOutcome, build_with_fallback
from publisher.services.hashing import sha256_text
from publisher.services.live import build_log_key, version_prefix, write_latest_pointer
from publisher.services.object_storage import (
    IMMUTABLE_CACHE_CONTROL,
    NO_CACHE_CONTROL,
    ObjectStorage,
    ObjectStorageConfigurationError,
    ObjectStorageError,
)
from publisher.services.slugs import generate_slug, subdomain_url

logger = logging.getLogger(__name__)

NO_JOBS_MESSAGE = "No queued jobs"
PUBLISHED_MESSAGE = "Job published"
VERSION_CREATE_FAILED_MESSAGE = "Failed to create version"
FINALIZE_FAILED_MESSAGE = "Failed to finalize publish"

_UPLOADING = (PublishJobStatusEnum.uploading, 40, "Uploading artifacts...")
_FINALIZING = (PublishJobStatusEnum.finalizing, 85, "Finalizing publish...")
_PUBLISHED = (PublishJobStatusEnum.published, 100, "Published")


class ClaimError(RuntimeError):
    pass


class JobFailedError(RuntimeError):
    """A claimed job was moved to `failed`; `job_id` names it."""

    def __init__(self, message: str, *, job_id: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class VersionCreateError(JobFailedError):
    pass


class FinalizeError(JobFailedError):
    pass


@dataclass
class RunOutcome:
    job_id: Optional[str]
    message: str
    version_id: Optional[str] = None
    version_tag: Optional[str] = None
    tier: Optional[str] = None


@dataclass
class UploadReport:
    uploaded: list[str]
    failed: list[str]


def _is_html(path: str) -> bool:
    return path.lower().endswith((".html", ".htm"))


def build_manifest(version_tag: str, outcome: BuildOutcome) -> tuple[str, str]:
    """Serialized manifest.json for a version and its checksum."""
    manifest = Manifest(
        versionTag=version_tag,
        entrypoint=outcome.entrypoint,
        files=[ManifestFileModel(**item.as_dict()) for item in outcome.artifacts.files],
    )
    text = json.dumps(manifest.model_dump(), indent=2)
    return text, sha256_text(text)


class PublishRunner:
    """
    Drives one publish job from claim to terminal state.

    Every artifact under the version prefix is written before the project row is
    promoted, so a reader that follows the promoted pointer always finds a complete
    version.
    """

    def __init__(
        self,
        *,
        storage: ObjectStorage,
        session_factory: Callable[[], Session] = SessionLocal,
        esbuild_bin: str | None = None,
        bundler_timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        icon_api_key: str | None = None,
    ) -> None:
        self.storage = storage
        self.session_factory = session_factory
        self.esbuild_bin = esbuild_bin
        self.bundler_timeout_seconds = bundler_timeout_seconds
        self.http_client = http_client
        self.icon_api_key = icon_api_key if icon_api_key is not None else settings.GEMINI_IMAGE_API_KEY

    async def run(self, job_id: str | None = None) -> RunOutcome:
        session = self.session_factory()
        try:
            return await self._run(session, job_id)
        finally:
            session.close()

    async def _run(self, session: Session, job_id: str | None) -> RunOutcome:
        jobs = PublishJobsRepository(session)
        try:
            job = jobs.claim(job_id)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("publish.claim_failed", extra={"job_id": job_id})
            raise ClaimError("Failed to fetch job") from exc
        if job is None:
            return RunOutcome(job_id=None, message=NO_JOBS_MESSAGE)

        log_extra = {"job_id": job.id, "project_id": job.project_id}
        logger.info("publish.job_claimed", extra={**log_extra, "attempts": job.attempts})

        versions = PublishVersionsRepository(session)
        try:
            version_tag = versions.next_version_tag(job.project_id)
            prefix = version_prefix(job.user_id, job.project_id, version_tag)
            version = versions.create(
                project_id=job.project_id,
                user_id=job.user_id,
                version_tag=version_tag,
                storage_prefix=prefix,
            )
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("publish.version_create_failed", extra=log_extra)
            self._mark_failed(jobs, job.id, VERSION_CREATE_FAILED_MESSAGE)
            raise VersionCreateError(VERSION_CREATE_FAILED_MESSAGE, job_id=job.id) from exc

        log_extra["version_tag"] = version_tag
        project = ProjectsRepository(session).get(job.project_id)
        icon_task = self._start_icon_task(job, project)
        try:
            outcome = await build_with_fallback(
                self.storage,
                user_id=job.user_id,
                project_id=job.project_id,
                esbuild_bin=self.esbuild_bin,
                timeout_seconds=self.bundler_timeout_seconds,
            )
            logger.info(
                "publish.build_outcome",
                extra={**log_extra, "tier": outcome.tier, "files": len(outcome.artifacts)},
            )

            await asyncio.to_thread(self._report, jobs, job.id, *_UPLOADING)
            report = await self.upload_artifacts(prefix, outcome)
            logger.info(
                "publish.artifacts_uploaded",
                extra={**log_extra, "uploaded": len(report.uploaded), "failed": len(report.failed)},
            )
            if report.failed:
                outcome.log.append(f"{len(report.failed)} artifact upload(s) failed: {', '.join(report.failed)}")

            entry_path = f"{prefix}/{outcome.entrypoint}"
            await self._write_pointer(job, version_tag, entry_path)

            manifest_text, manifest_checksum = build_manifest(version_tag, outcome)
            await self._put(
                f"{prefix}/manifest.json",
                manifest_text.encode("utf-8"),
                content_type="application/json",
                cache_control=IMMUTABLE_CACHE_CONTROL,
            )

            log_key = build_log_key(job.user_id, job.project_id, version_tag)
            await self._put(
                log_key,
                outcome.log_text.encode("utf-8"),
                content_type="text/plain; charset=utf-8",
                cache_control=NO_CACHE_CONTROL,
            )
            log_url = self._public_url(log_key)
            await asyncio.to_thread(self._report, jobs, job.id, *_FINALIZING, log_url=log_url)

            try:
                await asyncio.to_thread(
                    versions.finalize,
                    version.id,
                    checksum=manifest_checksum,
                    size_bytes=outcome.artifacts.total_size,
                    entrypoint=outcome.entrypoint,
                    build_time_ms=outcome.build_time_ms,
                )
                await asyncio.to_thread(self._promote, session, job, version, project)

                if icon_task is not None:
                    await self._join_icon_task(icon_task, log_extra)
                    icon_task = None

                status, progress, message = _PUBLISHED
                await asyncio.to_thread(
                    jobs.update_progress,
                    job.id,
                    status=status,
                    progress=progress,
                    message=message,
                    log_url=log_url,
                    version_id=version.id,
                )
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("publish.finalize_failed", extra=log_extra)
                self._mark_failed(jobs, job.id, FINALIZE_FAILED_MESSAGE)
                raise FinalizeError(FINALIZE_FAILED_MESSAGE, job_id=job.id) from exc
        finally:
            if icon_task is not None:
                await self._join_icon_task(icon_task, log_extra, cancel=True)

        logger.info("publish.job_published", extra={**log_extra, "tier": outcome.tier})
        return RunOutcome(
            job_id=job.id,
            message=PUBLISHED_MESSAGE,
            version_id=version.id,
            version_tag=version_tag,
            tier=outcome.tier,
        )

    async def upload_artifacts(self, prefix: str, outcome: BuildOutcome) -> UploadReport:
        """
        Upsert every blob under `prefix`. A failed file is logged and skipped so the
        remaining files still land.
        """
        uploaded: list[str] = []
        failed: list[str] = []
        for blob in outcome.artifacts.blobs:
            key = f"{prefix}/{blob.path}"
            try:
                await asyncio.to_thread(
                    self.storage.upload,
                    bucket=settings.PUBLISH_BUCKET,
                    key=key,
                    data=blob.data,
                    content_type=blob.content_type,
                    cache_control=NO_CACHE_CONTROL if _is_html(blob.path) else IMMUTABLE_CACHE_CONTROL,
                )
            except ObjectStorageError as exc:
                logger.warning("publish.artifact_upload_failed", extra={"key": key, "error": str(exc)})
                failed.append(blob.path)
                continue
            uploaded.append(blob.path)
        return UploadReport(uploaded=uploaded, failed=failed)

    async def _put(self, key: str, data: bytes, *, content_type: str, cache_control: str) -> None:
        try:
            await asyncio.to_thread(
                self.storage.upload,
                bucket=settings.PUBLISH_BUCKET,
                key=key,
                data=data,
                content_type=content_type,
                cache_control=cache_control,
            )
        except ObjectStorageError as exc:
            logger.warning("publish.object_upload_failed", extra={"key": key, "error": str(exc)})

    async def _write_pointer(self, job: PublishJob, version_tag: str, path: str) -> None:
        try:
            written = await asyncio.to_thread(
                write_latest_pointer,
                self.storage,
                user_id=job.user_id,
                project_id=job.project_id,
                version_tag=version_tag,
                path=path,
            )
        except ObjectStorageError as exc:
            logger.warning(
                "publish.latest_pointer_failed",
                extra={"job_id": job.id, "project_id": job.project_id, "error": str(exc)},
            )
            return
        if not written:
            logger.info("publish.latest_pointer_skipped", extra={"job_id": job.id, "version_tag": version_tag})

    def _public_url(self, key: str) -> Optional[str]:
        try:
            return self.storage.public_url(bucket=settings.PUBLISH_BUCKET, key=key)
        except ObjectStorageConfigurationError as exc:
            logger.warning("publish.public_url_unavailable", extra={"key": key, "error": str(exc)})
            return None

    def _promote(
        self,
        session: Session,
        job: PublishJob,
        version: PublishVersion,
        project: Optional[Project],
    ) -> None:
        name = project.name if project is not None else None
        slug = (project.slug if project is not None else None) or generate_slug(name, job.project_id)
        url = subdomain_url(slug)
        promoted = ProjectsRepository(session).promote(
            project_id=job.project_id,
            version=version,
            slug=slug,
            subdomain_url=url,
            published_url=url,
        )
        if promoted:
            logger.info("publish.project_promoted", extra={"project_id": job.project_id, "slug": slug})
        else:
            logger.warning(
                "publish.promotion_skipped",
                extra={"project_id": job.project_id, "version_tag": version.version_tag},
            )

    def _report(
        self,
        jobs: PublishJobsRepository,
        job_id: str,
        status: PublishJobStatusEnum,
        progress: int,
        message: str,
        *,
        log_url: str | None = None,
    ) -> None:
        try:
            jobs.update_progress(job_id, status=status, progress=progress, message=message, log_url=log_url)
        except SQLAlchemyError as exc:
            jobs.session.rollback()
            logger.warning(
                "publish.progress_update_failed",
                extra={"job_id": job_id, "status": status.value, "error": str(exc)},
            )

    def _mark_failed(self, jobs: PublishJobsRepository, job_id: str, message: str) -> None:
        try:
            jobs.update_progress(
                job_id,
                status=PublishJobStatusEnum.failed,
                progress=0,
                message=message,
            )
        except SQLAlchemyError:
            jobs.session.rollback()
            logger.exception("publish.mark_failed_failed", extra={"job_id": job_id})

    def _start_icon_task(self, job: PublishJob, project: Optional[Project]) -> Optional[asyncio.Task]:
        if project is None or project.thumbnail_url or not self.icon_api_key:
            return None
        logger.info("publish.icon_generation_started", extra={"project_id": project.id})
        return asyncio.create_task(
            self._generate_icon(
                project_id=project.id,
                user_id=job.user_id,
                name=project.name or "Game",
                description=project.description,
            )
        )

    async def _generate_icon(
        self,
        *,
        project_id: str,
        user_id: str,
        name: str,
        description: Optional[str],
    ) -> icons.IconResult:
        result = await icons.generate_app_icon(
            self.storage,
            project_id=project_id,
            user_id=user_id,
            name=name,
            description=description,
            api_key=self.icon_api_key,
            http_client=self.http_client,
        )
        if isinstance(result, icons.IconGenerated):
            await asyncio.to_thread(self._store_thumbnail, project_id, result.url)
            logger.info("publish.icon_generated", extra={"project_id": project_id, "url": result.url})
        else:
            logger.warning(
                "publish.icon_generation_failed",
                extra={"project_id": project_id, "error": result.error, "timed_out": result.timed_out},
            )
        return result

    def _store_thumbnail(self, project_id: str, url: str) -> None:
        session = self.session_factory()
        try:
            ProjectsRepository(session).set_thumbnail(project_id, url)
        finally:
            session.close()

    async def _join_icon_task(self, task: asyncio.Task, log_extra: dict, *, cancel: bool = False) -> None:
        if cancel and not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not task.cancelled() or (current is not None and current.cancelling()):
                raise
            logger.info("publish.icon_task_cancelled", extra=log_extra)
        except Exception:  # noqa: BLE001 - icon failures never change the job outcome
            logger.exception("publish.icon_task_error", extra=log_extra)


def _store_thumbnail(project_id: str, url: str) -> None:
    with session_scope() as session:
        ProjectsRepository(session).set_thumbnail(project_id, url)


@dataclass
class BackfillResult:
    project_id: str
    name: str
    result: icons.IconResult


async def backfill_missing_icons(
    storage: ObjectStorage,
    *,
    api_key: str,
    http_client: httpx.AsyncClient | None = None,
) -> list[BackfillResult]:
    """Generate icons, one at a time, for published projects that still lack a thumbnail."""
    with session_scope() as session:
        pending = [
            (project.id, project.user_id, project.name, project.description)
            for project in ProjectsRepository(session).list_published_without_thumbnail()
        ]
    logger.info("icons.backfill_started", extra={"count": len(pending)})

    results: list[BackfillResult] = []
    for project_id, user_id, name, description in pending:
        result = await icons.generate_app_icon(
            storage,
            project_id=project_id,
            user_id=user_id,
            name=name or "Game",
            description=description,
            api_key=api_key,
            http_client=http_client,
        )
        if isinstance(result, icons.IconGenerated):
            await asyncio.to_thread(_store_thumbnail, project_id, result.url)
        else:
            logger.warning("icons.backfill_failed", extra={"project_id": project_id, "error": result.error})
        results.append(BackfillResult(project_id=project_id, name=name, result=result))
    return results
