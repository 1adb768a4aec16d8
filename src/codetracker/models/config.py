"""Configuration models."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RepositoryConfig(BaseModel):
    """Configuration for a Git repository to track elements in."""

    repo_path: Path = Field(..., description="Path to the Git repository")
    max_file_size_bytes: int = Field(
        default=1_000_000,  # 1MB
        description="Blobs larger than this are treated as unavailable",
    )

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "repo_path": "/path/to/repo",
                "max_file_size_bytes": 1000000,
            }
        }


class TrackerSettings(BaseSettings):
    """Tracking engine settings.

    Settings can be loaded from environment variables or .env file.
    All settings are prefixed with CODETRACKER_ (e.g., CODETRACKER_CACHE_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="CODETRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Matcher scoring
    name_weight: float = Field(default=0.3, description="Weight of name equality")
    signature_weight: float = Field(default=0.2, description="Weight of signature equality")
    body_weight: float = Field(default=0.5, description="Weight of body token similarity")
    acceptance_threshold: float = Field(
        default=0.5, description="Minimum score for a candidate to be accepted"
    )
    ambiguity_epsilon: float = Field(
        default=0.01, description="Scores closer than this to the best are considered tied"
    )

    # Extraction / inlining detection
    extraction_containment: float = Field(
        default=0.9,
        description="Fraction of a body that must appear inside another to count as extracted",
    )
    min_extraction_tokens: int = Field(
        default=5, description="Bodies shorter than this never count as extracted/inlined"
    )

    # Resource limits
    blob_timeout_seconds: float = Field(default=30.0, description="Timeout for blob retrieval")
    parse_timeout_seconds: float = Field(default=30.0, description="Timeout for parsing a blob")
    max_workers: int = Field(default=4, description="Worker threads for parsing and prefetch")
    max_consecutive_gaps: int = Field(
        default=3, description="Consecutive gapped steps before the walk is abandoned"
    )

    # Snapshot cache
    cache_path: Optional[Path] = Field(
        default=None, description="JSON file the snapshot cache is persisted to"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Minimum level for structured logs")
