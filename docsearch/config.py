"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


DEFAULT_ALLOWED_UPLOAD_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/csv",
    "image/png",
    "image/jpeg",
    "image/jpg",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str = Field(...)
    openai_timeout_seconds: float = Field(default=60.0)

    # Vision Settings
    vision_model: str = "gpt-4o"
    vision_max_tokens: int = 4000

    # Search / Vector store
    search_model: str = "gpt-4o"
    default_vector_store_id: Optional[str] = Field(default=None)
    vector_store_name: str = Field(default="document-store")
    vector_store_expires_days: int = Field(default=30)

    # Supabase
    supabase_url: str = Field(...)
    supabase_service_key: str = Field(...)
    supabase_documents_table: str = Field(default="documents")

    # Redis (search cache, optional)
    redis_url: Optional[str] = Field(default=None)
    search_cache_ttl_seconds: int = Field(default=60 * 60)

    # Upload policy
    max_upload_size: int = Field(default=10 * 1024 * 1024)
    allowed_upload_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_UPLOAD_TYPES))
    upload_timeout_seconds: float = Field(default=300.0)

    # Rasterization / conversion tools
    pdftocairo_path: str = Field(default="pdftocairo")
    pdf_render_size: int = Field(default=1024)
    rasterize_timeout_seconds: float = Field(default=120.0)
    libreoffice_path: Optional[str] = Field(default=None)

    # Progress tracking
    progress_session_ttl_seconds: float = Field(default=600.0)

    # App Settings
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
