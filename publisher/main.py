import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from publisher.config import settings
from publisher.db.base import engine
from publisher.routers import icons, live, publish
from publisher.security import WorkerAuthError
from publisher.services.object_storage import ObjectStorageConfigurationError
from publisher.services.publish_runner import ClaimError, JobFailedError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="PlayCraft Publisher",
        default_response_class=ORJSONResponse,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(settings.cors_origins)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkerAuthError)
    async def worker_auth_error_handler(_request: Request, exc: WorkerAuthError) -> ORJSONResponse:
        return ORJSONResponse(status_code=401, content={"success": False, "error": str(exc)})

    @app.exception_handler(ClaimError)
    async def claim_error_handler(_request: Request, exc: ClaimError) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.exception_handler(JobFailedError)
    async def job_failed_error_handler(_request: Request, exc: JobFailedError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=500,
            content={"success": False, "jobId": exc.job_id, "error": str(exc)},
        )

    @app.exception_handler(ObjectStorageConfigurationError)
    async def object_storage_configuration_error_handler(
        _request: Request, exc: ObjectStorageConfigurationError
    ) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(publish.router)
    app.include_router(live.router)
    app.include_router(icons.router)

    return app


app = create_app()
