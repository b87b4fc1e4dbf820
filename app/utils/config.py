"""
Configuration management for Inbox Clerk.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Inbox Configuration
    watch_dir: Path = Path("~/Downloads")
    data_dir: Path = Path("~/.local/share/inbox-clerk")
    review_folder_name: str = "_ClerkReview"
    quarantine_folder_name: str = ".clerk_quarantine"

    # Readiness Configuration
    debounce_interval: float = 0.5  # seconds
    min_file_age: float = 2.0  # seconds
    temporary_extensions: str = "crdownload,part,download,tmp,partial"
    whitelisted_extensions: str = "dmg,pkg,app,iso"

    # Retry Configuration
    retry_base_delay: float = 5.0
    retry_max_delay: float = 60.0
    retry_max_attempts: int = 5
    retry_tick_interval: float = 2.0

    # Worker Configuration
    rescan_interval: float = 30.0
    worker_threads: int = 2

    # Classifier Configuration
    ai_enabled: bool = True
    wait_for_model: bool = True
    model_wait_timeout: float = 120.0
    fallback_retry_enabled: bool = True
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "phi3.5"
    ollama_timeout: float = 60.0

    # Extraction / Storage Configuration
    max_extracted_chars: int = 8000
    max_log_entries: int = 1000

    # API Configuration
    monitor_on_startup: bool = True
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Inbox Clerk API"
    api_version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_watch_dir(self) -> Path:
        """Resolve the watched inbox directory."""
        return self.watch_dir.expanduser()

    def get_data_dir(self) -> Path:
        """Resolve the directory holding rules and activity files."""
        return self.data_dir.expanduser()

    def get_review_dir(self) -> Path:
        """Review holding folder, inside the inbox."""
        return self.get_watch_dir() / self.review_folder_name

    def get_quarantine_dir(self) -> Path:
        """Quarantine folder for duplicates, inside the inbox."""
        return self.get_watch_dir() / self.quarantine_folder_name

    def get_temporary_extensions(self) -> set[str]:
        """Parse temporary (partial download) extensions into a set."""
        return _parse_extensions(self.temporary_extensions)

    def get_whitelisted_extensions(self) -> set[str]:
        """Parse whitelisted (never moved) extensions into a set."""
        return _parse_extensions(self.whitelisted_extensions)


def _parse_extensions(raw: str) -> set[str]:
    return {
        e.strip().lower().lstrip('.')
        for e in raw.split(',')
        if e.strip()
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
