from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from publisher.db.enums import PublishJobStatusEnum, PublishTargetEnum


class RunRequest(BaseModel):
    jobId: str | None = None


class RunResponse(BaseModel):
    success: bool
    jobId: str | None = None
    message: str | None = None
    error: str | None = None


class EnqueueRequest(BaseModel):
    projectId: str = Field(min_length=1)
    userId: str = Field(min_length=1)
    target: PublishTargetEnum = PublishTargetEnum.production


class EnqueueResponse(BaseModel):
    success: bool
    jobId: str


class JobStatusResponse(BaseModel):
    id: str
    projectId: str
    status: PublishJobStatusEnum
    progress: int
    message: str | None = None
    logUrl: str | None = None
    versionId: str | None = None
    attempts: int
    createdAt: datetime


class ManifestFileModel(BaseModel):
    path: str
    size: int = Field(ge=0)
    contentType: str
    checksum: str


class Manifest(BaseModel):
    versionTag: str
    entrypoint: str
    files: list[ManifestFileModel]


class LatestPointer(BaseModel):
    versionTag: str
    path: str


class PromoteResponse(BaseModel):
    success: bool
    versionTag: str
    path: str


class LiveResponse(BaseModel):
    slug: str
    versionTag: str
    path: str
    entrypoint: str
    source: Literal["latest.json", "primary_version"]


class IconBackfillItem(BaseModel):
    projectId: str
    name: str
    success: bool
    url: str | None = None
    error: str | None = None


class IconBackfillResponse(BaseModel):
    count: int
    results: list[IconBackfillItem]
