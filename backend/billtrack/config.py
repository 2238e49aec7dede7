from pydantic_settings import BaseSettings, SettingsConfigDict

from billtrack.database import is_memory_sqlite


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/billtrack.db"
    database_echo: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    # Materialization
    default_days_ahead: int = 90

    # Scheduler
    scheduler_enabled: bool = True
    materialize_hour: int = 1
    maintenance_hour: int = 2

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    @property
    def is_memory_db(self) -> bool:
        return is_memory_sqlite(self.database_url)
