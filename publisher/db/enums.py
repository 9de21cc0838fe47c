from enum import Enum


class PublishJobStatusEnum(str, Enum):
    queued = "queued"
    building = "building"
    uploading = "uploading"
    finalizing = "finalizing"
    published = "published"
    failed = "failed"


class ProjectStatusEnum(str, Enum):
    draft = "draft"
    building = "building"
    published = "published"


class PublishTargetEnum(str, Enum):
    preview = "preview"
    production = "production"
