from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    Field,
    HttpUrl,
    computed_field,
)
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Use top level .env file (one level above ./backend/)
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    FRONTEND_HOST: str = "http://localhost:5173"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS] + [
            self.FRONTEND_HOST
        ]

    PROJECT_NAME: str = "Form Script Sandbox"
    SENTRY_DSN: HttpUrl | None = None

    # Postgres is used when POSTGRES_SERVER is set; otherwise a local SQLite file.
    POSTGRES_SERVER: str | None = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    SQLITE_PATH: str = "formscript.db"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if not self.POSTGRES_SERVER:
            return f"sqlite:///{self.SQLITE_PATH}"
        return str(
            MultiHostUrl.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    # Script sandbox
    SCRIPT_EXEC_TIMEOUT_MS: int = Field(default=1000, gt=0)
    # Address space a worker may add on top of what it inherits, in MB; 0 disables
    SCRIPT_MEMORY_LIMIT_MB: int = Field(default=256, ge=0)
    SCRIPT_MAX_SOURCE_CHARS: int = Field(default=100_000, gt=0)
    SCRIPT_WARN_ON_CONSOLE: bool = True
    SCRIPT_START_METHOD: Literal["fork", "spawn", "forkserver"] | None = None
    SCRIPT_WORKER_START_TIMEOUT_SEC: float = Field(default=10.0, gt=0)


settings = Settings()  # type: ignore
