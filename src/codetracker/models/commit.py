"""Data models for commits as seen by the tracking engine."""

from datetime import datetime
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field


class Commit(BaseModel):
    """An immutable commit: identifier, parents and ordering timestamp."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "abc123def456",
                "parent_ids": ["parent123"],
                "timestamp": "2024-01-15T10:30:00Z",
                "summary": "Rename foo to bar",
            }
        },
    )

    id: str = Field(..., description="Full commit SHA hash")
    parent_ids: Tuple[str, ...] = Field(default=(), description="Parent commit hashes")
    timestamp: datetime = Field(..., description="Committer timestamp")
    summary: str = Field(default="", description="First line of the commit message")

    @property
    def short_id(self) -> str:
        return self.id[:7]

    @property
    def is_root(self) -> bool:
        return not self.parent_ids

    @property
    def is_merge(self) -> bool:
        return len(self.parent_ids) > 1
