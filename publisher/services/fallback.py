from __future__ import annotations

import asyncio
import logging
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from pathlib import Path

from publisher.services import bundler, source_fetcher
from publisher.services.artifacts import BuildArtifacts, collect, collect_from_files
from publisher.services.object_storage import ObjectStorage

logger = logging.getLogger(__name__)

TIER_BUILD = "build"
TIER_DIST = "dist"
TIER_PLACEHOLDER = "placeholder"

_PLACEHOLDER_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>PlayCraft Publish Stub</title>
  <style>
    body {{ background:#0b0b10; color:#e8e8f0; font-family: system-ui, sans-serif; display:flex; align-items:center; justify-content:center; min-height:100vh; margin:0; }}
    .card {{ padding:24px 28px; border-radius:16px; border:1px solid #2a2a35; background:#13131c; box-shadow:0 12px 40px rgba(0,0,0,0.35); }}
    .pill {{ display:inline-flex; align-items:center; gap:8px; padding:6px 10px; border-radius:999px; background:#1f1f2b; color:#8b5cf6; font-weight:600; font-size:12px; }}
  </style>
</head>
<body>
  <div class="card">
    <div class="pill">PlayCraft Publish Stub</div>
    <h1 style="margin:12px 0 6px;">Deployment placeholder</h1>
    <p style="margin:0; color:#a3a3b3;">Build failed. Uploaded placeholder at {timestamp}.</p>
  </div>
</body>
</html>
"""


@dataclass
class BuildOutcome:
    artifacts: BuildArtifacts
    entrypoint: str
    tier: str
    build_time_ms: int
    log: list[str] = field(default_factory=list)

    @property
    def log_text(self) -> str:
        text = "\n".join(line.rstrip("\n") for line in self.log if line)
        return (text + "\n") if text else "No build log.\n"


def utc_timestamp(now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def placeholder_artifacts(now: datetime | None = None) -> BuildArtifacts:
    html = _PLACEHOLDER_TEMPLATE.format(timestamp=escape(utc_timestamp(now)))
    artifacts = BuildArtifacts()
    artifacts.add("index.html", html.encode("utf-8"))
    return artifacts


async def _primary_build(
    storage: ObjectStorage,
    *,
    user_id: str,
    project_id: str,
    log: list[str],
    esbuild_bin: str | None,
    timeout_seconds: float | None,
) -> BuildArtifacts:
    project_files = await asyncio.to_thread(
        source_fetcher.fetch_project_files, storage, user_id=user_id, project_id=project_id
    )
    log.append(f"Fetched {len(project_files)} source files")
    entry = source_fetcher.resolve_entry(project_files)
    log.append(f"Resolved entry point {entry}")

    with tempfile.TemporaryDirectory(prefix="publish-build-") as tmp:
        staging_dir = Path(tmp)
        await asyncio.to_thread(source_fetcher.stage_files, project_files, staging_dir)
        result = await bundler.build_bundle(
            staging_dir,
            entry,
            esbuild_bin=esbuild_bin,
            timeout_seconds=timeout_seconds,
        )
        log.append(result.log)
        return collect(result.out_dir, project_files, build_log=log)


async def build_with_fallback(
    storage: ObjectStorage,
    *,
    user_id: str,
    project_id: str,
    esbuild_bin: str | None = None,
    timeout_seconds: float | None = None,
) -> BuildOutcome:
    """
    Produce an artifact set through the three-tier degrade:
    fresh build, then previously uploaded dist/ output, then a placeholder page.
    Always returns something publishable.
    """
    log: list[str] = []
    started = time.monotonic()
    artifacts: BuildArtifacts | None = None
    tier = TIER_BUILD

    try:
        artifacts = await _primary_build(
            storage,
            user_id=user_id,
            project_id=project_id,
            log=log,
            esbuild_bin=esbuild_bin,
            timeout_seconds=timeout_seconds,
        )
    except Exception as exc:  # noqa: BLE001 - every primary failure degrades to the dist tier
        output = getattr(exc, "output", "")
        if output:
            log.append(output)
        log.append(f"Build failed, attempting dist fallback: {exc}")
        logger.warning(
            "publish.build_failed",
            extra={"project_id": project_id, "error": str(exc), "error_type": type(exc).__name__},
        )
        tier = TIER_DIST
        try:
            dist_files = await asyncio.to_thread(
                source_fetcher.fetch_dist_files, storage, user_id=user_id, project_id=project_id
            )
            artifacts = collect_from_files(dist_files)
            if artifacts:
                log.append(f"Using {len(artifacts)} files from previously uploaded dist/")
        except Exception as dist_exc:  # noqa: BLE001
            log.append(f"Dist fallback failed: {dist_exc}")
            logger.warning("publish.dist_fallback_failed", extra={"project_id": project_id, "error": str(dist_exc)})
            artifacts = None

    if not artifacts:
        tier = TIER_PLACEHOLDER
        artifacts = placeholder_artifacts()
        log.append("Using placeholder artifact because build output was empty.")
        logger.warning("publish.placeholder_used", extra={"project_id": project_id})

    build_time_ms = int((time.monotonic() - started) * 1000)
    return BuildOutcome(
        artifacts=artifacts,
        entrypoint=artifacts.resolve_entrypoint(),
        tier=tier,
        build_time_ms=build_time_ms,
        log=log,
    )
