import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings

DEFAULT_AUTH_SECRET = "kids-learn-default-secret-change-in-prod"
DEFAULT_DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    auth_secret: str = Field(
        DEFAULT_AUTH_SECRET,
        validation_alias=AliasChoices("KIDSLEARN_AUTH_SECRET", "AUTH_SECRET"),
    )
    api_base_url: str = Field("http://127.0.0.1:8000", alias="KIDSLEARN_API_BASE_URL")
    api_timeout_seconds: float = Field(10.0, alias="KIDSLEARN_API_TIMEOUT_SECONDS")
    database_url: Optional[str] = Field(None, alias="KIDSLEARN_DATABASE_URL")
    database_pool_size: int = Field(10, alias="KIDSLEARN_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="KIDSLEARN_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="KIDSLEARN_DATABASE_ECHO")
    persistence_mode: Literal["database", "filesystem"] = Field(
        "database",
        alias="KIDSLEARN_PERSISTENCE_MODE",
    )
    progress_data_dir: Path = Field(DEFAULT_DATA_DIR, alias="KIDSLEARN_PROGRESS_DATA_DIR")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def uses_default_secret(self) -> bool:
        return self.auth_secret == DEFAULT_AUTH_SECRET


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
