"""Engine configuration using Pydantic Settings."""

import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DUALSCAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Worker pool
    max_workers: int = 0  # 0 = one worker per CPU

    # Structural analysis
    max_structural_files: int = 1000  # 0 disables structural analysis
    max_file_size: int = 1 * 1024 * 1024  # 1MB
    unit_node_budget: int = 200_000
    unit_time_budget_seconds: float = 10.0

    # Deduplication
    line_tolerance: int = 1
    identity_window: int = 5

    # Clustering
    similarity_threshold: int = 4
    cluster_scope: Literal["file", "project"] = "file"

    # Per-rule config files
    rule_config_dir: Optional[str] = None

    @field_validator("max_workers", "max_structural_files", "unit_node_budget", "line_tolerance", "identity_window")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:
        """Reject negative counts."""
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return v

    @field_validator("unit_time_budget_seconds")
    @classmethod
    def validate_time_budget(cls, v: float) -> float:
        """Zero means no wall-clock limit."""
        if v < 0:
            raise ValueError("unit_time_budget_seconds must not be negative")
        return v

    @field_validator("similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Threshold is a count of agreeing core flags."""
        if not 1 <= v <= 6:
            raise ValueError("similarity_threshold must be between 1 and 6")
        return v

    @property
    def worker_count(self) -> int:
        return self.max_workers or os.cpu_count() or 1

    @property
    def structural_enabled(self) -> bool:
        return self.max_structural_files > 0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
