from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from publisher.config import settings
from publisher.services.object_storage import ObjectStorage, ObjectStorageError

logger = logging.getLogger(__name__)

DIST_SEGMENT = "/dist/"

# Conventional entry files, most specific first.
ENTRY_CANDIDATES: tuple[str, ...] = (
    "src/main.tsx",
    "src/main.ts",
    "src/main.jsx",
    "src/main.js",
    "src/index.tsx",
    "src/index.ts",
    "src/index.jsx",
    "src/index.js",
    "main.tsx",
    "main.ts",
    "index.tsx",
    "index.ts",
)


class NoFilesFound(RuntimeError):
    pass


class NoEntryFound(RuntimeError):
    pass


def project_prefix(user_id: str, project_id: str) -> str:
    return f"{user_id}/{project_id}"


def fetch_project_files(storage: ObjectStorage, *, user_id: str, project_id: str) -> dict[str, bytes]:
    """
    Download a project's source tree into memory, keyed by path relative to the
    project root. Anything under a `dist/` segment is prior build output and is skipped.
    """
    prefix = project_prefix(user_id, project_id)
    files: dict[str, bytes] = {}
    for key in storage.list_recursive(bucket=settings.SOURCE_BUCKET, prefix=prefix):
        if DIST_SEGMENT in f"/{key}":
            continue
        relative = key[len(prefix) + 1:] if key.startswith(f"{prefix}/") else key
        try:
            files[relative] = storage.download(bucket=settings.SOURCE_BUCKET, key=key)
        except ObjectStorageError as exc:
            logger.warning("source_fetcher.download_failed", extra={"key": key, "error": str(exc)})
    if not files:
        raise NoFilesFound("No project files found to build")
    return files


def fetch_dist_files(storage: ObjectStorage, *, user_id: str, project_id: str) -> dict[str, bytes]:
    """Previously uploaded `dist/` output for a project, keyed relative to `dist/`."""
    dist_prefix = f"{project_prefix(user_id, project_id)}/dist"
    files: dict[str, bytes] = {}
    for key in storage.list_recursive(bucket=settings.SOURCE_BUCKET, prefix=dist_prefix):
        relative = key[len(dist_prefix) + 1:]
        if not relative:
            continue
        try:
            files[relative] = storage.download(bucket=settings.SOURCE_BUCKET, key=key)
        except ObjectStorageError as exc:
            logger.warning("source_fetcher.dist_download_failed", extra={"key": key, "error": str(exc)})
    return files


def resolve_entry(paths: Iterable[str]) -> str:
    available = set(paths)
    for candidate in ENTRY_CANDIDATES:
        if candidate in available:
            return candidate
    raise NoEntryFound("No entry file found (expected src/main.tsx or similar)")


def stage_files(files: dict[str, bytes], staging_dir: Path) -> list[str]:
    """Write the file map under `staging_dir`, refusing paths that escape it."""
    root = staging_dir.resolve()
    written: list[str] = []
    for relative, data in files.items():
        pure = PurePosixPath(relative)
        if pure.is_absolute() or ".." in pure.parts:
            logger.warning("source_fetcher.unsafe_path_skipped", extra={"path": relative})
            continue
        target = (root / pure).resolve()
        if not target.is_relative_to(root):
            logger.warning("source_fetcher.unsafe_path_skipped", extra={"path": relative})
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        written.append(relative)
    return written
