"""Environment-based configuration for the consensus pipeline."""

from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pipeline policy constants, overridable via CONSENSUS_* environment variables.

    Thresholds must be re-validated against the golden-set regression corpus
    before a change ships.
    """

    # Field verifier (TEXT/DATE fields)
    text_confirm_threshold: float = 0.90
    text_suspicious_threshold: float = 0.75

    # Field verifier (NUMERIC fields): digits that may differ and still count as a near-match
    numeric_max_edit_distance: int = 1

    # Per-source timeout for the two structured-extraction calls (None = wait indefinitely)
    source_timeout_seconds: Optional[float] = 120.0

    # OpenAI-backed extraction source
    openai_model: str = "gpt-5"

    log_level: str = "INFO"

    model_config = {"env_prefix": "CONSENSUS_", "case_sensitive": False}


settings = Settings()
