from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Check definitions (YAML)
    checks_file: str = "checks.yaml"

    # SQLite result store
    db_path: str = "data/checks.db"

    # Query API
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Probe thread pool size; 0 sizes it from the number of checks
    probe_workers: int = 0

    # Logging
    log_level: str = "INFO"


settings = Settings()
