from __future__ import annotations

import time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from publisher.db.models import PublishVersion
from publisher.db.repositories.base import Repository


def version_tag_value(tag: str | None) -> int:
    try:
        return int(tag or 0)
    except ValueError:
        return 0


class PublishVersionsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, version_id: str) -> Optional[PublishVersion]:
        stmt = select(PublishVersion).where(PublishVersion.id == version_id)
        return self.session.scalars(stmt).first()

    def latest_for_project(self, project_id: str) -> Optional[PublishVersion]:
        stmt = (
            select(PublishVersion)
            .where(PublishVersion.project_id == project_id)
            .order_by(PublishVersion.version_tag.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def next_version_tag(self, project_id: str) -> str:
        """
        Millisecond timestamp, bumped past the newest existing tag so tags stay
        strictly increasing per project even within the same millisecond.
        """
        now_ms = time.time_ns() // 1_000_000
        latest = self.latest_for_project(project_id)
        previous = version_tag_value(latest.version_tag) if latest else 0
        return str(max(now_ms, previous + 1))

    def create(
        self,
        *,
        project_id: str,
        user_id: str,
        version_tag: str,
        storage_prefix: str,
        entrypoint: str = "index.html",
        is_preview: bool = False,
    ) -> PublishVersion:
        version = PublishVersion(
            project_id=project_id,
            user_id=user_id,
            version_tag=version_tag,
            storage_prefix=storage_prefix,
            entrypoint=entrypoint,
            is_preview=is_preview,
        )
        return self.save(version)

    def finalize(
        self,
        version_id: str,
        *,
        checksum: str,
        size_bytes: int,
        entrypoint: str,
        build_time_ms: int | None = None,
    ) -> Optional[PublishVersion]:
        version = self.get(version_id)
        if not version:
            return None
        version.checksum = checksum
        version.size_bytes = size_bytes
        version.entrypoint = entrypoint
        if build_time_ms is not None:
            version.build_time_ms = build_time_ms
        return self.save(version)
