from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from publisher.services.hashing import sha256_hex

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "public/"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES: dict[str, str] = {
    "html": "text/html; charset=utf-8",
    "js": "application/javascript",
    "mjs": "application/javascript",
    "css": "text/css",
    "json": "application/json",
    "map": "application/json",
    "txt": "text/plain; charset=utf-8",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "ico": "image/x-icon",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp4": "video/mp4",
    "webm": "video/webm",
}


def content_type_for(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower().lstrip(".")
    return CONTENT_TYPES.get(suffix, DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class ManifestFile:
    path: str
    size: int
    contentType: str
    checksum: str

    def as_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "size": self.size,
            "contentType": self.contentType,
            "checksum": self.checksum,
        }


@dataclass(frozen=True)
class ArtifactBlob:
    path: str
    data: bytes
    content_type: str


@dataclass
class BuildArtifacts:
    """In-memory artifact set. Paths are relative, POSIX-style and unique."""

    files: list[ManifestFile] = field(default_factory=list)
    blobs: list[ArtifactBlob] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.files)

    def paths(self) -> list[str]:
        return [item.path for item in self.files]

    def add(self, path: str, data: bytes) -> bool:
        """Add or replace `path`. Returns True when an existing entry was overridden."""
        content_type = content_type_for(path)
        record = ManifestFile(path=path, size=len(data), contentType=content_type, checksum=sha256_hex(data))
        blob = ArtifactBlob(path=path, data=data, content_type=content_type)
        for index, existing in enumerate(self.files):
            if existing.path == path:
                self.files[index] = record
                self.blobs[index] = blob
                return True
        self.files.append(record)
        self.blobs.append(blob)
        return False

    def resolve_entrypoint(self, default: str = "index.html") -> str:
        paths = self.paths()
        if not paths or default in paths:
            return default
        return paths[0]


def _normalize_relative(path: str) -> str:
    parts = [part for part in PurePosixPath(path.replace("\\", "/")).parts if part not in ("", ".", "/")]
    if not parts or ".." in parts:
        raise ValueError(f"Unsafe artifact path: {path!r}")
    return "/".join(parts)


def collect_from_files(files: Mapping[str, bytes]) -> BuildArtifacts:
    artifacts = BuildArtifacts()
    for path in sorted(files):
        artifacts.add(_normalize_relative(path), files[path])
    return artifacts


def collect(
    out_dir: Path,
    passthrough_files: Mapping[str, bytes] | None = None,
    build_log: list[str] | None = None,
) -> BuildArtifacts:
    """
    Walk a build output directory into a BuildArtifacts set, then merge any
    `public/` files from the project tree at the deployable root.

    Passthrough files override compiled output that shares the same path; each
    override is noted in `build_log` when one is given.
    """
    artifacts = BuildArtifacts()
    root = Path(out_dir)
    for file_path in sorted(p for p in root.rglob("*") if p.is_file()):
        relative = file_path.relative_to(root).as_posix()
        artifacts.add(relative, file_path.read_bytes())

    for path in sorted(passthrough_files or {}):
        if not path.startswith(PUBLIC_PREFIX):
            continue
        relative = path[len(PUBLIC_PREFIX):]
        if not relative:
            continue
        relative = _normalize_relative(relative)
        if artifacts.add(relative, passthrough_files[path]):
            logger.warning("artifacts.passthrough_override", extra={"path": relative})
            if build_log is not None:
                build_log.append(f"public/{relative} overrides compiled output at {relative}")
    return artifacts
