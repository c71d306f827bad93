"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def find_env_file() -> Optional[Path]:
    """Find .env file in multiple possible locations."""
    current_dir = os.path.dirname(os.path.abspath(__file__))

    possible_paths = [
        os.path.join(os.getcwd(), ".env"),
        os.path.join(os.path.dirname(current_dir), ".env"),
        os.path.join(os.path.dirname(os.path.dirname(current_dir)), ".env"),
    ]

    for path_str in possible_paths:
        if os.path.exists(path_str):
            path = Path(path_str)
            LOGGER.info(f"Found .env file at: {path}")
            return path

    LOGGER.debug("No .env file found in expected locations")
    return None


ENV_FILE = find_env_file()

_ENV_CONFIG = SettingsConfigDict(
    env_file=str(ENV_FILE) if ENV_FILE else None,
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_prefix="",
)


class LLMSettings(BaseSettings):
    """Vision/language model provider settings."""

    provider: str = Field(default="gemini", validation_alias="LLM_PROVIDER")
    # Empty disables failover
    fallback_provider: str = Field(default="", validation_alias="LLM_FALLBACK_PROVIDER")

    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", validation_alias="GEMINI_MODEL")

    openrouter_api_key: str = Field(default="", validation_alias="OPENROUTER_API_KEY")
    openrouter_api_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_API_URL"
    )
    openrouter_model: str = Field(default="google/gemini-2.0-flash-001", validation_alias="OPENROUTER_MODEL")

    # Fixed, generous ceiling so truncation stays rare
    max_output_tokens: int = Field(default=16000, validation_alias="LLM_MAX_OUTPUT_TOKENS")
    request_timeout: float = Field(default=120.0, validation_alias="LLM_REQUEST_TIMEOUT")
    retry_on_truncation: bool = Field(default=False, validation_alias="LLM_RETRY_ON_TRUNCATION")

    # Parse results of identical uploads; size 0 disables the cache
    result_cache_size: int = Field(default=100, validation_alias="RESULT_CACHE_SIZE")
    result_cache_ttl_seconds: float = Field(default=24 * 3600, validation_alias="RESULT_CACHE_TTL_SECONDS")
    result_cache_min_confidence: float = Field(default=0.7, validation_alias="RESULT_CACHE_MIN_CONFIDENCE")

    model_config = _ENV_CONFIG

    def model_post_init(self, __context) -> None:
        """Log settings after initialization."""
        LOGGER.info(f"LLM Provider: {self.provider}")
        if self.fallback_provider:
            LOGGER.info(f"LLM fallback provider: {self.fallback_provider}")
        if self.provider == "gemini":
            LOGGER.info(f"Gemini API Key present: {bool(self.gemini_api_key)}")
        elif self.provider == "openrouter":
            LOGGER.info(f"OpenRouter API Key present: {bool(self.openrouter_api_key)}")
        else:
            LOGGER.warning(f"Using unsupported LLM provider: {self.provider}")


class OCRServiceSettings(BaseSettings):
    """Remote OCR microservice settings."""

    url: str = Field(default="", validation_alias="OCR_SERVICE_URL")
    api_key: str = Field(default="", validation_alias="OCR_SERVICE_API_KEY")
    enabled: bool = Field(default=True, validation_alias="OCR_SERVICE_ENABLED")
    timeout: float = Field(default=90.0, validation_alias="OCR_SERVICE_TIMEOUT")
    health_timeout: float = Field(default=10.0, validation_alias="OCR_HEALTH_TIMEOUT")
    health_cache_seconds: float = Field(default=60.0, validation_alias="OCR_HEALTH_CACHE_SECONDS")
    health_failure_cache_seconds: float = Field(default=5.0, validation_alias="OCR_HEALTH_FAILURE_CACHE_SECONDS")

    model_config = _ENV_CONFIG


class ExtractionSettings(BaseSettings):
    """Thresholds and limits for the extraction pipeline."""

    max_file_size_bytes: int = Field(default=20 * 1024 * 1024, validation_alias="MAX_FILE_SIZE_BYTES")

    # Quality gate
    min_local_text_length: int = Field(default=100, validation_alias="MIN_LOCAL_TEXT_LENGTH")
    min_ocr_text_length: int = Field(default=50, validation_alias="MIN_OCR_TEXT_LENGTH")
    confidence_floor: float = Field(default=0.6, validation_alias="OCR_CONFIDENCE_FLOOR")
    min_chars_per_page: int = Field(default=80, validation_alias="MIN_CHARS_PER_PAGE")
    min_expected_parts: int = Field(default=2, validation_alias="MIN_EXPECTED_PARTS")
    sufficient_parts: int = Field(default=15, validation_alias="SUFFICIENT_PARTS")

    # Chunking
    chunk_row_threshold: int = Field(default=80, validation_alias="CHUNK_ROW_THRESHOLD")
    rows_per_chunk: int = Field(default=75, validation_alias="ROWS_PER_CHUNK")
    chunk_window_chars: int = Field(default=6000, validation_alias="CHUNK_WINDOW_CHARS")

    # Fan-out
    page_batch_size: int = Field(default=10, validation_alias="PAGE_BATCH_SIZE")
    chunk_batch_size: int = Field(default=3, validation_alias="CHUNK_BATCH_SIZE")

    # Images and rendering
    image_target_bytes: int = Field(default=1_500_000, validation_alias="IMAGE_TARGET_BYTES")
    image_max_dimension: int = Field(default=2048, validation_alias="IMAGE_MAX_DIMENSION")
    render_scale: float = Field(default=2.0, validation_alias="PDF_RENDER_SCALE")
    render_max_pages: int = Field(default=5, validation_alias="PDF_RENDER_MAX_PAGES")

    # Timeouts (seconds)
    template_detection_timeout: float = Field(default=5.0, validation_alias="TEMPLATE_DETECTION_TIMEOUT")
    shortcode_resolution_timeout: float = Field(default=5.0, validation_alias="SHORTCODE_RESOLUTION_TIMEOUT")

    default_material_id: str = Field(default="MAT-WHITE-18", validation_alias="DEFAULT_MATERIAL_ID")
    default_thickness_mm: float = Field(default=18.0, validation_alias="DEFAULT_THICKNESS_MM")
    duplicate_row_threshold: int = Field(default=10, validation_alias="DUPLICATE_ROW_THRESHOLD")

    # Empty disables archiving of uploads
    archive_dir: str = Field(default="", validation_alias="UPLOAD_ARCHIVE_DIR")

    model_config = _ENV_CONFIG

    @property
    def min_text_length_by_strategy(self) -> Dict[str, int]:
        """Minimum useful text length keyed by strategy id."""
        return {
            "local_text": self.min_local_text_length,
            "remote_ocr": self.min_ocr_text_length,
        }


class RateLimitSettings(BaseSettings):
    """Admission control and retry settings for external providers."""

    max_concurrent_per_provider: int = Field(default=4, validation_alias="PROVIDER_MAX_CONCURRENCY")
    max_attempts: int = Field(default=3, validation_alias="PROVIDER_MAX_ATTEMPTS")
    base_delay: float = Field(default=1.0, validation_alias="PROVIDER_RETRY_BASE_DELAY")
    max_delay: float = Field(default=30.0, validation_alias="PROVIDER_RETRY_MAX_DELAY")
    jitter: float = Field(default=0.3, validation_alias="PROVIDER_RETRY_JITTER")

    model_config = _ENV_CONFIG


class SessionSettings(BaseSettings):
    """Multi-page session settings."""

    backend: str = Field(default="memory", validation_alias="SESSION_STORE_BACKEND")
    ttl_seconds: float = Field(default=60.0, validation_alias="SESSION_TTL_SECONDS")
    sweep_interval_seconds: float = Field(default=30.0, validation_alias="SESSION_SWEEP_INTERVAL_SECONDS")
    auto_accept_threshold: float = Field(default=0.95, validation_alias="AUTO_ACCEPT_THRESHOLD")
    part_confidence_floor: float = Field(default=0.7, validation_alias="PART_CONFIDENCE_FLOOR")
    part_review_threshold: float = Field(default=0.8, validation_alias="PART_REVIEW_THRESHOLD")

    model_config = _ENV_CONFIG


class DatabaseSettings(BaseSettings):
    """Database connection settings for the SQL session store."""

    url: str = Field(default="sqlite+aiosqlite:///./cutlist_intake.db", validation_alias="DATABASE_URL")
    echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")

    model_config = _ENV_CONFIG


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    app_name: str = Field(default="Cutlist Intake", validation_alias="APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=False, validation_alias="DEBUG")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    cors_origins: list[str] = Field(default=["http://localhost:3000"], validation_alias="CORS_ORIGINS")

    api_v1_prefix: str = "/api/v1"
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")

    llm: LLMSettings = Field(default_factory=lambda: LLMSettings())
    ocr: OCRServiceSettings = Field(default_factory=lambda: OCRServiceSettings())
    extraction: ExtractionSettings = Field(default_factory=lambda: ExtractionSettings())
    rate_limit: RateLimitSettings = Field(default_factory=lambda: RateLimitSettings())
    sessions: SessionSettings = Field(default_factory=lambda: SessionSettings())
    db: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return self.db.url

    @property
    def llm_provider(self) -> str:
        return self.llm.provider


settings = Settings()
