from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from publisher.db.enums import ProjectStatusEnum
from publisher.db.models import Project, PublishVersion
from publisher.db.repositories.base import Repository
from publisher.db.repositories.publish_versions import version_tag_value


class ProjectsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, project_id: str) -> Optional[Project]:
        stmt = select(Project).where(Project.id == project_id)
        return self.session.scalars(stmt).first()

    def get_by_slug(self, slug: str) -> Optional[Project]:
        stmt = select(Project).where(Project.slug == slug)
        return self.session.scalars(stmt).first()

    def list_published_without_thumbnail(self) -> list[Project]:
        stmt = (
            select(Project)
            .where(Project.status == ProjectStatusEnum.published, Project.thumbnail_url.is_(None))
            .order_by(Project.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def set_thumbnail(self, project_id: str, thumbnail_url: str) -> Optional[Project]:
        project = self.get(project_id)
        if not project:
            return None
        project.thumbnail_url = thumbnail_url
        return self.save(project)

    def promote(
        self,
        *,
        project_id: str,
        version: PublishVersion,
        slug: str,
        subdomain_url: str,
        published_url: str,
        newest_wins: bool = True,
    ) -> bool:
        """
        Flip the project's live pointer to `version` under a row lock.

        With `newest_wins` the pointer only moves forward: if the project already
        points at a version with a newer tag, nothing is written and False is returned.
        """
        stmt = select(Project).where(Project.id == project_id).with_for_update()
        project = self.session.scalars(stmt).first()
        if not project:
            self.session.rollback()
            return False

        if newest_wins and project.primary_version_id and project.primary_version_id != version.id:
            current = self.session.get(PublishVersion, project.primary_version_id)
            if current is not None and version_tag_value(current.version_tag) > version_tag_value(version.version_tag):
                self.session.rollback()
                return False

        project.primary_version_id = version.id
        project.slug = slug
        project.subdomain_url = subdomain_url
        project.published_url = published_url
        project.published_at = datetime.now(timezone.utc)
        project.status = ProjectStatusEnum.published
        self.session.commit()
        self.session.refresh(project)
        return True
