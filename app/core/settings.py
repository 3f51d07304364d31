#app/core/settings.py
# app/core/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from pydantic import field_validator

class Settings(BaseSettings):
    """
    Основные переменные окружения и настройки приложения.
    Все значения берутся из .env.
    """
    # Database
    DATABASE_URL: str

    # Redis (side-cache, не источник истины)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_PREFIX: str = ""
    TASK_LIST_CACHE_TTL: int = 10 * 60
    TASK_CACHE_TTL: int = 15 * 60
    USER_RESOLVE_CACHE_TTL: int = 10 * 60

    # Супер-админ: может назначать задачи любому пользователю
    SUPER_ADMIN_EMAIL: str = "superadmin@example.com"

    # Если False — таблица task_time_logs не создаётся (деградированный режим)
    TIME_LOGS_ENABLED: bool = True

    # App meta
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8081"]

    # Авто-сплит строкового списка ALLOWED_ORIGINS из .env
    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("SUPER_ADMIN_EMAIL", mode="before")
    @classmethod
    def normalize_super_admin_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
