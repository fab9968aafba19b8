"""
Configuration management for Folder Sorter.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from domains.organizing.classifier import Backend, OllamaBackend, OpenAIBackend


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API Configuration
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Folder Sorter API"
    api_version: str = "1.0.0"

    # Classifier backend selection
    classifier_backend: Literal["ollama", "openai"] = "ollama"

    # Ollama Configuration
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    ollama_temperature: float = 0.1
    ollama_num_predict: int = 256
    ollama_timeout: float = 120.0

    # OpenAI-compatible Configuration
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com"
    openai_max_completion_tokens: int = 4096
    openai_timeout: float = 60.0

    # Retry Configuration
    classifier_max_attempts: int = 3
    classifier_retry_base_delay: float = 2.0  # seconds
    prompt_text_budget: int = 2000  # characters

    # Pipeline Configuration
    debounce_interval: float = 2.0  # seconds
    cooldown_seconds: float = 60.0
    watcher_latency: float = 0.5
    worker_threads: int = 2
    history_limit: int = 500
    log_retention: int = 200

    # Extraction Configuration
    ocr_languages: str = "eng"
    ocr_min_confidence: float = 30.0
    pdf_page_limit: int = 10

    # Side channels
    notifications_enabled: bool = True
    watch_state_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def build_backend(self) -> Backend:
        """Resolve the configured classification backend."""
        if self.classifier_backend == "openai":
            return OpenAIBackend(
                api_key=self.openai_api_key or "",
                model=self.openai_model,
                base_url=self.openai_base_url,
                max_completion_tokens=self.openai_max_completion_tokens,
                timeout=self.openai_timeout,
            )
        return OllamaBackend(
            model=self.ollama_model,
            base_url=self.ollama_url,
            temperature=self.ollama_temperature,
            num_predict=self.ollama_num_predict,
            timeout=self.ollama_timeout,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
