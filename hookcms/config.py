from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # Application settings
    app_name: str = "HookCMS"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    app_url: str = "http://localhost:8000"

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./hookcms.db"

    # Token settings
    jwt_secret: str = "change-me"
    jwt_refresh_secret: str = "change-me-too"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    # Registration
    allow_registrations: bool = False
    default_roles: list[str] = ["user"]

    # Extensions
    content_dir: Path = BASE_DIR / "content"
    admin_dist_dir: Path = BASE_DIR / "admin" / "dist"

    # Uploads
    max_file_size: int = 10 * 1024 * 1024
    # comma separated, e.g. "jpg,png,pdf"; empty allows every type
    allowed_file_extensions: str = ""

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Rate limiting
    rate_limit_enabled: bool = True
    auth_rate_limit: str = "10/minute"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Real-time / background
    sse_keepalive_interval: int = 15
    scheduler_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def plugins_dir(self) -> Path:
        return self.content_dir / "plugins"

    @property
    def themes_dir(self) -> Path:
        return self.content_dir / "themes"

    def get_allowed_file_extensions(self) -> list[str] | None:
        """Lowercase extensions without the dot, or None when every type is allowed."""
        extensions = [ext.strip().lower().lstrip(".") for ext in self.allowed_file_extensions.split(",")]
        return [ext for ext in extensions if ext] or None


settings = Settings()
