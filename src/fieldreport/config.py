from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Voice agent connector selection: "demo" (default, offline) or "http".
    agent_backend: str = os.getenv("AGENT_BACKEND", "demo")
    agent_id: str = os.getenv("AGENT_ID", "daily-report-agent")
    # Base URL of the backend that proxies the voice agent's REST API,
    # e.g. "https://api.example.com/api".
    agent_api_base_url: str = os.getenv("AGENT_API_BASE_URL", "http://localhost:3001/api")
    agent_api_timeout_seconds: float = float(os.getenv("AGENT_API_TIMEOUT_SECONDS", "30"))

    # Finalization tuning. The voice backend finalizes transcripts and audio
    # some time after the socket closes and publishes no SLA for it; these are
    # empirically chosen defaults.
    transcript_max_attempts: int = int(os.getenv("TRANSCRIPT_MAX_ATTEMPTS", "6"))
    transcript_retry_delay_seconds: float = float(os.getenv("TRANSCRIPT_RETRY_DELAY_SECONDS", "5"))
    audio_max_attempts: int = int(os.getenv("AUDIO_MAX_ATTEMPTS", "6"))
    audio_retry_delay_seconds: float = float(os.getenv("AUDIO_RETRY_DELAY_SECONDS", "5"))
    finalize_initial_delay_seconds: float = float(os.getenv("FINALIZE_INITIAL_DELAY_SECONDS", "8"))
    # Finished finalization runs kept for status lookups and persistence retries.
    finalization_runs_retained: int = int(os.getenv("FINALIZATION_RUNS_RETAINED", "100"))

    # Report store selection: "local" (default) or "http".
    report_store_backend: str = os.getenv("REPORT_STORE_BACKEND", "local")
    report_api_base_url: Optional[str] = os.getenv("REPORT_API_BASE_URL")
    # Directory used by the local object storage backend.
    report_storage_dir: Path = Path(os.getenv("REPORT_STORAGE_DIR", "storage"))
    # Root folder for object keys inside the storage backend.
    report_storage_prefix: str = os.getenv("REPORT_STORAGE_PREFIX", "SITELOGIX")

    # Directory holding reports that could not be saved to the primary store.
    fallback_dir: Path = Path(os.getenv("FALLBACK_DIR", "fallback_reports"))

    # Optional JSON file with the interview checklist. When unset the built-in
    # daily report checklist is used.
    checklist_config_path: Optional[Path] = (
        Path(os.getenv("CHECKLIST_CONFIG_PATH")) if os.getenv("CHECKLIST_CONFIG_PATH") else None
    )

    # Optional database configuration for the SQL-backed report index.
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    use_sql_repos: bool = os.getenv("USE_SQL_REPOS", "false").lower() == "true"

    # CORS configuration: comma-separated origins (e.g. "https://app.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")


settings = Settings()
