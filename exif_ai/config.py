"""
Configuration management for the Exif AI service.
"""

from functools import lru_cache
from typing import Annotated, List, Optional
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_DESCRIPTION_TAGS = ["XPComment", "Description", "ImageDescription", "Caption-Abstract"]
DEFAULT_TAG_TAGS = ["XPKeywords"]
SUPPORTED_TASKS = ["description", "tag", "tags"]


def _split_csv(v):
    """Accept comma-separated strings as well as lists."""
    if v is None:
        return []
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return [str(item).strip() for item in v if str(item).strip()]


class Settings(BaseSettings):
    """Application settings with validation.

    Built once at startup and passed explicitly to the pipeline and the
    server; nothing below the entry points reads the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXIF_AI_",
        env_file=".env",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, gt=0, lt=65536, validation_alias=AliasChoices("EXIF_AI_PORT", "PORT"))
    max_upload_mb: int = Field(default=50, gt=0)

    # Generation Defaults
    provider: str = Field(default="ollama")
    model: Optional[str] = Field(default=None)
    description_prompt: str = Field(default="Describe this image in detail.")
    tag_prompt: str = Field(default="Generate relevant tags for this image.")
    tasks: Annotated[List[str], NoDecode] = Field(default=["description", "tag"])
    max_tokens: int = Field(default=1024, gt=0)
    request_timeout: float = Field(default=120.0, gt=0.0)

    # Metadata Configuration
    description_tags: Annotated[List[str], NoDecode] = Field(default=list(DEFAULT_DESCRIPTION_TAGS))
    tag_tags: Annotated[List[str], NoDecode] = Field(default=list(DEFAULT_TAG_TAGS))
    tag_delimiter: str = Field(default=";")
    tag_dedupe: str = Field(default="exact")
    exiftool_path: Optional[str] = Field(default=None)

    # Provider Endpoints
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        validation_alias=AliasChoices("EXIF_AI_OLLAMA_BASE_URL", "OLLAMA_BASE_URL"),
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        validation_alias=AliasChoices("EXIF_AI_OPENAI_BASE_URL", "OPENAI_BASE_URL"),
    )
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("EXIF_AI_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com",
        validation_alias=AliasChoices("EXIF_AI_ANTHROPIC_BASE_URL", "ANTHROPIC_BASE_URL"),
    )
    anthropic_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("EXIF_AI_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    google_base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        validation_alias=AliasChoices("EXIF_AI_GOOGLE_BASE_URL", "GOOGLE_BASE_URL"),
    )
    google_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("EXIF_AI_GOOGLE_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY"),
    )

    # Logging Configuration
    log_level: str = Field(default="INFO")
    verbose: bool = Field(default=False)

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v):
        """Provider identifiers are matched case-insensitively."""
        v = v.strip().lower()
        if not v:
            raise ValueError("EXIF_AI_PROVIDER must not be empty")
        return v

    @field_validator("model", mode="before")
    @classmethod
    def blank_model_is_default(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("tasks", mode="before")
    @classmethod
    def parse_tasks(cls, v):
        """Ensure every configured task is supported."""
        tasks = [task.lower() for task in _split_csv(v)]
        unknown = [task for task in tasks if task not in SUPPORTED_TASKS]
        if unknown:
            raise ValueError(f"EXIF_AI_TASKS must only contain: {SUPPORTED_TASKS}")
        return tasks

    @field_validator("description_tags", "tag_tags", mode="before")
    @classmethod
    def parse_field_lists(cls, v):
        return _split_csv(v)

    @field_validator("tag_dedupe")
    @classmethod
    def validate_tag_dedupe(cls, v):
        """Ensure the dedupe policy is supported."""
        supported = ["none", "exact", "casefold"]
        if v.lower() not in supported:
            raise ValueError(f"EXIF_AI_TAG_DEDUPE must be one of: {supported}")
        return v.lower()

    @field_validator("ollama_base_url", "openai_base_url", "anthropic_base_url", "google_base_url")
    @classmethod
    def validate_base_url(cls, v):
        """Ensure provider URLs are properly formatted."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Provider base URLs must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure the log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"EXIF_AI_LOG_LEVEL must be one of: {valid_levels}")
        return v.upper()

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
