"""
Configuration module for the Intelligent Podcast Generator.
Uses Pydantic for validation and environment variable loading.
"""

from typing import Dict
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    openai_api_key: str = Field(default="sk-placeholder", env="OPENAI_API_KEY")

    # OpenAI Model Settings
    gpt_model: str = Field(default="gpt-4o-mini")
    generation_temperature: float = Field(default=0.6)
    embedding_backend: str = Field(default="openai", env="EMBEDDING_BACKEND")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536)
    hashing_dimensions: int = Field(default=256)
    tts_model: str = Field(default="gpt-4o-mini-tts")
    tts_max_chars: int = Field(default=4000)

    # Neo4j Settings
    store_backend: str = Field(default="neo4j", env="STORE_BACKEND")
    neo4j_uri: str = Field(default="bolt://localhost:7687", env="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", env="NEO4J_USER")
    neo4j_password: str = Field(default="password", env="NEO4J_PASSWORD")

    # Environment
    environment: str = Field(default="development", env="ENVIRONMENT")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Extraction Settings
    max_tokens_per_chunk: int = Field(default=6000)
    max_extraction_tokens_per_document: int = Field(default=24000)
    max_concepts: int = Field(default=40)

    # Script Planning Settings
    words_per_minute: int = Field(default=150)
    words_per_turn: int = Field(default=70)
    min_chapters: int = Field(default=3)
    max_chapters: int = Field(default=8)
    minutes_per_chapter: float = Field(default=5.0)
    min_predicted_questions: int = Field(default=5)
    max_predicted_questions: int = Field(default=10)
    breakpoint_interval: int = Field(default=4)

    # Audio Format (must match the TTS provider's native output)
    sample_rate: int = Field(default=24000)
    num_channels: int = Field(default=1)
    bits_per_sample: int = Field(default=16)

    # Blob Fetch
    fetch_timeout: float = Field(default=60.0)
    asset_cache_ttl_seconds: float = Field(default=300.0)
    asset_cache_max_entries: int = Field(default=256)

    # Watchdog
    generation_deadline_minutes: float = Field(default=30.0)

    # Paths
    data_dir: str = Field(default="./data")
    documents_dir: str = Field(default="./data/documents")
    output_dir: str = Field(default="./data/downloads")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


class LogConfig:
    """Logging configuration."""

    @staticmethod
    def setup_logging(level: str = "INFO") -> logging.Logger:
        """Set up logging configuration."""
        log_level = getattr(logging, level.upper(), logging.INFO)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)

        # Root logger
        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(console_handler)

        # Suppress noisy loggers
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)
        logging.getLogger("neo4j").setLevel(logging.WARNING)

        return root_logger


# ISO 639-1 code -> language name used in prompts
LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    """Get the display name of a language code, defaulting to English."""
    return LANGUAGE_NAMES.get((code or "").lower(), "English")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
