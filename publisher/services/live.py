from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy.orm import Session

from publisher.config import settings
from publisher.db.enums import ProjectStatusEnum
from publisher.db.repositories.projects import ProjectsRepository
from publisher.db.repositories.publish_versions import PublishVersionsRepository, version_tag_value
from publisher.schemas.publish import LatestPointer
from publisher.services.object_storage import NO_CACHE_CONTROL, ObjectNotFound, ObjectStorage
from publisher.services.slugs import generate_slug, subdomain_url
from publisher.services.source_fetcher import project_prefix

logger = logging.getLogger(__name__)

LATEST_POINTER_NAME = "latest.json"


class LiveResolutionError(RuntimeError):
    pass


def version_prefix(user_id: str, project_id: str, version_tag: str) -> str:
    return f"{project_prefix(user_id, project_id)}/versions/{version_tag}"


def latest_pointer_key(user_id: str, project_id: str) -> str:
    return f"{project_prefix(user_id, project_id)}/{LATEST_POINTER_NAME}"


def build_log_key(user_id: str, project_id: str, version_tag: str) -> str:
    return f"{project_prefix(user_id, project_id)}/logs/{version_tag}.txt"


def read_latest_pointer(storage: ObjectStorage, *, user_id: str, project_id: str) -> LatestPointer | None:
    key = latest_pointer_key(user_id, project_id)
    try:
        raw = storage.download(bucket=settings.PUBLISH_BUCKET, key=key)
    except ObjectNotFound:
        return None
    try:
        return LatestPointer.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("live.latest_pointer_invalid", extra={"key": key, "error": str(exc)})
        return None


def write_latest_pointer(
    storage: ObjectStorage,
    *,
    user_id: str,
    project_id: str,
    version_tag: str,
    path: str,
    newest_wins: bool = True,
) -> bool:
    """
    Write the project-scoped live pointer. With `newest_wins` an existing pointer
    naming a newer version tag is left alone and False is returned.
    """
    if newest_wins:
        current = read_latest_pointer(storage, user_id=user_id, project_id=project_id)
        if current is not None and version_tag_value(current.versionTag) > version_tag_value(version_tag):
            logger.warning(
                "live.latest_pointer_newer_exists",
                extra={"project_id": project_id, "current": current.versionTag, "version_tag": version_tag},
            )
            return False

    pointer = LatestPointer(versionTag=version_tag, path=path)
    storage.upload(
        bucket=settings.PUBLISH_BUCKET,
        key=latest_pointer_key(user_id, project_id),
        data=json.dumps(pointer.model_dump()).encode("utf-8"),
        content_type="application/json",
        cache_control=NO_CACHE_CONTROL,
    )
    return True


@dataclass
class PromotionResult:
    version_tag: str
    path: str


def promote_version(
    session: Session,
    storage: ObjectStorage,
    *,
    project_id: str,
    version_id: str,
) -> PromotionResult:
    """Make an existing version live again (rollback). Bypasses the newest-wins guard."""
    projects = ProjectsRepository(session)
    versions = PublishVersionsRepository(session)

    project = projects.get(project_id)
    version = versions.get(version_id)
    if project is None or version is None or version.project_id != project.id:
        raise LiveResolutionError("Version not found")

    path = f"{version.storage_prefix}/{version.entrypoint}"
    write_latest_pointer(
        storage,
        user_id=version.user_id,
        project_id=version.project_id,
        version_tag=version.version_tag,
        path=path,
        newest_wins=False,
    )
    slug = project.slug or generate_slug(project.name, project.id)
    url = subdomain_url(slug)
    projects.promote(
        project_id=project.id,
        version=version,
        slug=slug,
        subdomain_url=url,
        published_url=url,
        newest_wins=False,
    )
    logger.info(
        "live.version_promoted",
        extra={"project_id": project_id, "version_id": version_id, "version_tag": version.version_tag},
    )
    return PromotionResult(version_tag=version.version_tag, path=path)


@dataclass
class LiveTarget:
    slug: str
    version_tag: str
    path: str
    entrypoint: str
    source: str


def resolve_live(session: Session, storage: ObjectStorage, *, slug: str) -> LiveTarget:
    """
    What is live for `slug` right now: latest.json first, the project's primary
    version row when the pointer is missing or unreadable.
    """
    project = ProjectsRepository(session).get_by_slug(slug)
    if project is None or project.status != ProjectStatusEnum.published:
        raise LiveResolutionError(f"No published project for slug '{slug}'")

    pointer = read_latest_pointer(storage, user_id=project.user_id, project_id=project.id)
    if pointer is not None:
        entrypoint = pointer.path.rsplit("/", 1)[-1]
        return LiveTarget(
            slug=slug,
            version_tag=pointer.versionTag,
            path=pointer.path,
            entrypoint=entrypoint,
            source="latest.json",
        )

    if not project.primary_version_id:
        raise LiveResolutionError(f"Project '{slug}' has no live version")
    version = PublishVersionsRepository(session).get(project.primary_version_id)
    if version is None:
        raise LiveResolutionError(f"Project '{slug}' has no live version")
    return LiveTarget(
        slug=slug,
        version_tag=version.version_tag,
        path=f"{version.storage_prefix}/{version.entrypoint}",
        entrypoint=version.entrypoint,
        source="primary_version",
    )
