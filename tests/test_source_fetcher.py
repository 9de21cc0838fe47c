from __future__ import annotations

import pytest

from publisher.config import settings
from publisher.services import source_fetcher


def _seed(storage, files: dict[str, bytes], *, user_id="user-1", project_id="proj-1") -> None:
    for relative, data in files.items():
        storage.put(settings.SOURCE_BUCKET, f"{user_id}/{project_id}/{relative}", data)


def test_fetch_project_files_skips_dist_output(storage):
    _seed(
        storage,
        {
            "src/main.tsx": b"render()",
            "public/logo.png": b"png",
            "dist/index.html": b"stale",
            "packages/ui/dist/index.js": b"stale",
        },
    )
    storage.put(settings.SOURCE_BUCKET, "user-1/proj-2/src/main.tsx", b"other project")

    files = source_fetcher.fetch_project_files(storage, user_id="user-1", project_id="proj-1")

    assert files == {"src/main.tsx": b"render()", "public/logo.png": b"png"}


def test_fetch_project_files_raises_when_empty(storage):
    _seed(storage, {"dist/index.html": b"only build output"})
    with pytest.raises(source_fetcher.NoFilesFound, match="No project files found to build"):
        source_fetcher.fetch_project_files(storage, user_id="user-1", project_id="proj-1")


def test_fetch_dist_files_is_keyed_relative_to_dist(storage):
    _seed(storage, {"dist/index.html": b"<html>", "dist/assets/app.js": b"js", "src/main.ts": b"src"})

    files = source_fetcher.fetch_dist_files(storage, user_id="user-1", project_id="proj-1")

    assert files == {"index.html": b"<html>", "assets/app.js": b"js"}


@pytest.mark.parametrize(
    ("paths", "expected"),
    [
        (["index.ts", "src/index.ts", "src/main.tsx"], "src/main.tsx"),
        (["index.ts", "src/index.ts"], "src/index.ts"),
        (["main.ts", "index.tsx"], "main.ts"),
        (["index.ts"], "index.ts"),
    ],
)
def test_resolve_entry_prefers_conventional_paths(paths, expected):
    assert source_fetcher.resolve_entry(paths) == expected


def test_resolve_entry_raises_without_candidates():
    with pytest.raises(source_fetcher.NoEntryFound):
        source_fetcher.resolve_entry(["README.md", "src/game.tsx"])


def test_stage_files_writes_tree_and_refuses_escapes(tmp_path):
    written = source_fetcher.stage_files(
        {"src/main.ts": b"x", "../outside.txt": b"bad", "/abs.txt": b"bad"},
        tmp_path,
    )

    assert written == ["src/main.ts"]
    assert (tmp_path / "src" / "main.ts").read_bytes() == b"x"
    assert not (tmp_path.parent / "outside.txt").exists()
