from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from publisher.db.enums import PublishJobStatusEnum
from publisher.db.models import PublishJob
from publisher.db.repositories.base import Repository

CLAIM_PROGRESS = 10
CLAIM_MESSAGE = "Building bundle..."
# Bounded retries when another invocation wins the compare-and-swap on the oldest candidate.
_MAX_CLAIM_ATTEMPTS = 5


class PublishJobsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, job_id: str) -> Optional[PublishJob]:
        stmt = select(PublishJob).where(PublishJob.id == job_id)
        return self.session.scalars(stmt).first()

    def enqueue(self, *, project_id: str, user_id: str, message: str | None = None) -> PublishJob:
        job = PublishJob(
            project_id=project_id,
            user_id=user_id,
            status=PublishJobStatusEnum.queued,
            progress=0,
            message=message,
        )
        return self.save(job)

    def claim(self, job_id: str | None = None) -> Optional[PublishJob]:
        """
        Atomically move one queued job to `building`.

        With `job_id` only that job is considered; otherwise the oldest queued job.
        Ownership is decided by a compare-and-swap UPDATE guarded on status='queued',
        so two concurrent callers can never both win the same row. Returns None when
        there is nothing to claim.
        """
        for _ in range(_MAX_CLAIM_ATTEMPTS):
            stmt = select(PublishJob.id).where(PublishJob.status == PublishJobStatusEnum.queued)
            if job_id:
                stmt = stmt.where(PublishJob.id == job_id)
            else:
                stmt = stmt.order_by(PublishJob.created_at.asc(), PublishJob.id.asc()).limit(1)
            candidate_id = self.session.scalars(stmt).first()
            if candidate_id is None:
                return None

            now = datetime.now(timezone.utc)
            result = self.session.execute(
                update(PublishJob)
                .where(
                    PublishJob.id == candidate_id,
                    PublishJob.status == PublishJobStatusEnum.queued,
                )
                .values(
                    status=PublishJobStatusEnum.building,
                    progress=CLAIM_PROGRESS,
                    message=CLAIM_MESSAGE,
                    attempts=PublishJob.attempts + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.session.commit()
                job = self.get(candidate_id)
                if job is not None:
                    self.session.refresh(job)
                return job

            self.session.rollback()
            if job_id:
                return None
        return None

    def update_progress(
        self,
        job_id: str,
        *,
        status: PublishJobStatusEnum,
        progress: int,
        message: str | None = None,
        log_url: str | None = None,
        version_id: str | None = None,
    ) -> Optional[PublishJob]:
        values: dict[str, Any] = {
            "status": status,
            "progress": max(0, min(100, progress)),
            "message": message,
            "updated_at": datetime.now(timezone.utc),
        }
        if log_url is not None:
            values["log_url"] = log_url
        if version_id is not None:
            values["version_id"] = version_id
        self.session.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        job = self.get(job_id)
        if job is not None:
            self.session.refresh(job)
        return job
