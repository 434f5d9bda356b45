from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DedupScope(str, Enum):
    GLOBAL = "global"
    LOCAL = "local"


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./catalog_media.db"
    redis_url: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # === Хранилище ===
    MEDIA_ROOT: Path = Field(default=Path("/app/media"))
    MEDIA_URL: str = Field(default="/media/")

    # === Дедупликация ===
    # global: одинаковые байты разных продуктов ссылаются на одни и те же файлы
    # local: каждый продукт хранит собственную копию
    DEDUP_SCOPE: DedupScope = Field(default=DedupScope.GLOBAL)

    # === Обработка изображений ===
    WEBP_QUALITY: int = Field(default=85, ge=1, le=100)
    WEBP_METHOD: int = Field(default=4, ge=0, le=6)
    MAX_UPLOAD_BYTES: int = Field(default=10 * 1024 * 1024)
    MIN_UPLOAD_BYTES: int = Field(default=1)
    DOWNLOAD_TIMEOUT: int = Field(default=15)

    # === Повторы ===
    STORAGE_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    STORAGE_RETRY_MAX_WAIT: float = Field(default=4.0)
    INGEST_RETRY_COUNTDOWN: int = Field(default=30)

    @field_validator("MEDIA_URL", mode="before")
    @classmethod
    def normalize_media_url(cls, v):
        if isinstance(v, str) and not v.endswith("/"):
            return v + "/"
        return v


settings = Settings()
