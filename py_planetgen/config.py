"""Configuration management."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings, read from PLANETGEN_* environment variables or .env."""

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Generation
    generation_timeout: int = Field(
        default=300, description="Generation timeout in seconds"
    )
    max_cells: int = Field(
        default=200000, description="Largest estimated cell count a request may ask for"
    )
    max_worlds: int = Field(
        default=50, ge=0, description="Finished worlds kept in memory before the oldest are evicted"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    class Config:
        env_file = ".env"
        env_prefix = "PLANETGEN_"
        extra = "ignore"


settings = Settings()
