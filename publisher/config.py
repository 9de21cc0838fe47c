from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., the esbuild subprocess).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    # Comma-separated list of origins allowed to call the API.
    BACKEND_CORS_ORIGINS: str = ""

    # Shared secret checked against the X-Worker-Key header. Unset disables the check.
    PUBLISH_WORKER_KEY: str | None = None

    STORAGE_ENDPOINT: str | None = None
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str
    STORAGE_SECRET_KEY: str
    STORAGE_USE_SSL: bool = True
    STORAGE_FORCE_PATH_STYLE: bool = True
    STORAGE_PUBLIC_BASE_URL: str | None = None
    STORAGE_LIST_PAGE_SIZE: int = 1000

    SOURCE_BUCKET: str = "project-files"
    PUBLISH_BUCKET: str = "published-games"

    PLATFORM_DOMAIN: str = "playcraft.games"

    ESBUILD_BIN: str = "esbuild"
    BUNDLER_TIMEOUT_SECONDS: float = 120.0
    BUNDLER_JS_TARGET: str = "es2020"

    GEMINI_IMAGE_API_KEY: str | None = None
    GEMINI_IMAGE_MODEL: str = "gemini-3-pro-image-preview"
    GEMINI_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    ICON_GENERATION_TIMEOUT_SECONDS: float = 60.0

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def storage_public_base_url(self) -> str | None:
        base = self.STORAGE_PUBLIC_BASE_URL or self.STORAGE_ENDPOINT
        return base.rstrip("/") if base else None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
