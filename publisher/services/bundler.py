from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from publisher.config import settings

logger = logging.getLogger(__name__)

BUNDLE_FILENAME = "main.js"
OUTPUT_DIRNAME = ".publish-out"

_SCRIPT_LOADERS = {
    ".ts": "ts",
    ".tsx": "tsx",
    ".js": "js",
    ".jsx": "jsx",
    ".css": "css",
    ".json": "json",
}
_FILE_LOADER_EXTENSIONS = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".mp3", ".wav", ".ogg")

_INDEX_HTML = """<!doctype html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>PlayCraft Game</title>
</head>
<body>
  <div id="root"></div>
  <script type="module" src="./main.js"></script>
</body>
</html>
"""


class BuildFailed(RuntimeError):
    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class BuildTimeout(BuildFailed):
    pass


@dataclass
class BuildResult:
    out_dir: Path
    log: str


def _resolve_esbuild_bin(configured: str | None = None) -> str:
    candidate = configured or settings.ESBUILD_BIN
    if os.path.sep in candidate:
        if not os.access(candidate, os.X_OK):
            raise BuildFailed(f"esbuild binary '{candidate}' is not executable.")
        return candidate
    resolved = shutil.which(candidate)
    if not resolved:
        raise BuildFailed(f"esbuild binary '{candidate}' not found in PATH.")
    return resolved


def build_command(esbuild_bin: str, *, entry: Path, out_dir: Path, target: str) -> list[str]:
    cmd = [
        esbuild_bin,
        str(entry),
        "--bundle",
        "--minify",
        "--platform=browser",
        "--format=esm",
        f"--target={target}",
        f"--outfile={out_dir / BUNDLE_FILENAME}",
        '--define:process.env.NODE_ENV="production"',
        '--define:import.meta.env.BASE_URL="./"',
        "--log-level=info",
        "--log-limit=50",
        "--color=false",
    ]
    cmd.extend(f"--loader:{ext}={loader}" for ext, loader in _SCRIPT_LOADERS.items())
    cmd.extend(f"--loader:{ext}=file" for ext in _FILE_LOADER_EXTENSIONS)
    return cmd


async def build_bundle(
    staging_dir: Path,
    entry_relative: str,
    *,
    esbuild_bin: str | None = None,
    timeout_seconds: float | None = None,
) -> BuildResult:
    """
    Bundle `entry_relative` inside `staging_dir` into `staging_dir/.publish-out`.

    The toolchain runs under a hard deadline; on expiry the process is killed and
    BuildTimeout is raised. A minimal index.html is written only when the
    toolchain did not emit one.
    """
    out_dir = staging_dir / OUTPUT_DIRNAME
    out_dir.mkdir(parents=True, exist_ok=True)
    binary = _resolve_esbuild_bin(esbuild_bin)
    deadline = float(timeout_seconds if timeout_seconds is not None else settings.BUNDLER_TIMEOUT_SECONDS)
    cmd = build_command(
        binary,
        entry=staging_dir / entry_relative,
        out_dir=out_dir,
        target=settings.BUNDLER_JS_TARGET,
    )

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(staging_dir),
        env=os.environ.copy(),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        raw_output, _ = await asyncio.wait_for(proc.communicate(), timeout=deadline)
    except asyncio.TimeoutError as exc:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        raise BuildTimeout(f"Build timed out after {deadline:g}s") from exc

    output = raw_output.decode(errors="ignore") if raw_output else ""
    if proc.returncode != 0:
        raise BuildFailed(f"esbuild exited with code {proc.returncode}", output=output)

    log = output
    if log and not log.endswith("\n"):
        log += "\n"
    log += "Build succeeded via esbuild\n"

    logger.info("bundler.build_succeeded", extra={"entry": entry_relative})

    index_path = out_dir / "index.html"
    if not index_path.exists():
        index_path.write_text(_INDEX_HTML, encoding="utf-8")
        log += "Generated index.html for bundle\n"

    return BuildResult(out_dir=out_dir, log=log)
