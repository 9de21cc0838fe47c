import base64
import os
import stat
import sys
import tempfile
from pathlib import Path
from urllib.parse import quote

import httpx
import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

TEST_DB_PATH = Path(tempfile.gettempdir()) / "test_publisher.db"

os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DB_PATH}")
os.environ.setdefault("STORAGE_ACCESS_KEY", "test_access_key")
os.environ.setdefault("STORAGE_SECRET_KEY", "test_secret_key")
os.environ.setdefault("STORAGE_ENDPOINT", "https://storage.example.test")
os.environ.setdefault("STORAGE_PUBLIC_BASE_URL", "https://cdn.example.test/storage/v1/object/public")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import delete  # noqa: E402

from publisher.config import settings  # noqa: E402
from publisher.db.base import Base, SessionLocal, engine  # noqa: E402
from publisher.db.enums import ProjectStatusEnum  # noqa: E402
from publisher.db.models import Project, PublishJob, PublishVersion  # noqa: E402
from publisher.main import app  # noqa: E402
from publisher.routers import publish as publish_router  # noqa: E402
from publisher.routers.deps import get_image_http_client, get_object_storage  # noqa: E402
from publisher.services.object_storage import ObjectNotFound, ObjectStorageError  # noqa: E402
from publisher.services.publish_runner import PublishRunner  # noqa: E402

TEST_USER_ID = "00000000-0000-0000-0000-0000000000aa"

# 1x1 transparent PNG.
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

FAKE_ESBUILD_OK = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    --outfile=*) outfile="${arg#--outfile=}" ;;
  esac
done
outdir=$(dirname "$outfile")
mkdir -p "$outdir"
printf 'console.log("bundle");' > "$outfile"
printf 'body{margin:0}' > "$outdir/main.css"
echo "bundled $outfile"
"""

FAKE_ESBUILD_FAIL = """#!/bin/sh
echo "error: Could not resolve \\"./missing\\""
exit 1
"""

FAKE_ESBUILD_HANG = """#!/bin/sh
exec sleep 30
"""


class InMemoryObjectStorage:
    """Dict-backed stand-in for ObjectStorage with the same call surface."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.metadata: dict[tuple[str, str], dict[str, str | None]] = {}
        self.upload_calls: list[tuple[str, str]] = []
        self.fail_upload_suffixes: set[str] = set()

    def put(self, bucket: str, key: str, data: bytes | str) -> None:
        self.objects[(bucket, key)] = data.encode("utf-8") if isinstance(data, str) else data

    def keys(self, bucket: str) -> list[str]:
        return sorted(key for (b, key) in self.objects if b == bucket)

    def read(self, bucket: str, key: str) -> bytes:
        return self.objects[(bucket, key)]

    def list_recursive(self, *, bucket: str, prefix: str) -> list[str]:
        normalized = prefix.strip("/") + "/"
        return [key for key in self.keys(bucket) if key.startswith(normalized)]

    def download(self, *, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError as exc:
            raise ObjectNotFound(f"Object not found: {bucket}/{key}", bucket=bucket, key=key) from exc

    def upload(self, *, bucket, key, data, content_type=None, cache_control=None) -> None:
        self.upload_calls.append((bucket, key))
        if any(key.endswith(suffix) for suffix in self.fail_upload_suffixes):
            raise ObjectStorageError(f"Upload failed for {bucket}/{key}: simulated", bucket=bucket, key=key)
        self.objects[(bucket, key)] = bytes(data)
        self.metadata[(bucket, key)] = {"content_type": content_type, "cache_control": cache_control}

    def public_url(self, *, bucket: str, key: str) -> str:
        return f"{settings.storage_public_base_url}/{bucket}/{quote(key)}"


def gemini_image_response(data: bytes = PNG_BYTES, mime_type: str = "image/png") -> dict:
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}}
                    ]
                }
            }
        ]
    }


def mock_image_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    engine.dispose()
    if TEST_DB_PATH.exists() and settings.DATABASE_URL.endswith(str(TEST_DB_PATH)):
        TEST_DB_PATH.unlink()
    Base.metadata.create_all(bind=engine)
    yield


def _clear_tables(session) -> None:
    session.execute(delete(PublishJob))
    session.execute(delete(PublishVersion))
    session.execute(delete(Project))
    session.commit()


@pytest.fixture()
def db_session():
    session = SessionLocal()
    _clear_tables(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear_tables(session)
        session.close()


@pytest.fixture()
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture()
def make_project(db_session):
    def _make(**kwargs) -> Project:
        values = {
            "user_id": TEST_USER_ID,
            "name": "Space Game",
            "description": "Dodge asteroids in deep space",
            "status": ProjectStatusEnum.draft,
        }
        values.update(kwargs)
        project = Project(**values)
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project

    return _make


@pytest.fixture()
def make_esbuild(tmp_path):
    def _make(script: str = FAKE_ESBUILD_OK, name: str = "esbuild") -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(script, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture()
def seed_sources(storage):
    def _seed(project: Project, files: dict[str, str | bytes]) -> None:
        for relative, data in files.items():
            storage.put(settings.SOURCE_BUCKET, f"{project.user_id}/{project.id}/{relative}", data)

    return _seed


@pytest.fixture()
def image_api_handler():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=gemini_image_response())

    handler.calls = calls
    return handler


@pytest.fixture()
def api_client(db_session, storage, make_esbuild, image_api_handler):
    esbuild_bin = make_esbuild()

    async def _image_client_override():
        async with mock_image_client(image_api_handler) as client:
            yield client

    def _runner_override() -> PublishRunner:
        return PublishRunner(storage=storage, esbuild_bin=esbuild_bin, icon_api_key="")

    app.dependency_overrides[get_object_storage] = lambda: storage
    app.dependency_overrides[get_image_http_client] = _image_client_override
    app.dependency_overrides[publish_router.get_publish_runner] = _runner_override
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
