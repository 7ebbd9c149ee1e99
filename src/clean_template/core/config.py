"""Core configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"

    # Database
    database_url: str = "sqlite:///./app.db"
    async_database_url: str = "sqlite+aiosqlite:///./app.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_echo: bool = False

    # Pagination
    max_page_size: int = 1000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # OpenTelemetry
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "clean-template"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def database_system(self) -> str:
        """Backend name from the database URL scheme (e.g. "postgresql")."""
        return self.database_url.split(":", 1)[0].split("+", 1)[0]


# Global settings instance
settings = Settings()
