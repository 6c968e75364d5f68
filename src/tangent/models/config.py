"""Configuration models for Tangent.

TangentConfig holds per-workspace settings: storage location, context and
summary caps, input limits, and enrichment behavior.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class TangentConfig(BaseModel):
    """Per-workspace configuration."""

    db_path: str = ":memory:"
    db_url: Optional[str] = None

    # Context assembly
    merge_context_limit: int = Field(default=8, ge=0)
    inherit_full_ancestry: bool = True

    # Summary generation (merge summaries and titles)
    summary_source_limit: int = Field(default=10, ge=1)
    summary_message_chars: int = Field(default=500, ge=1)
    summary_max_chars: int = Field(default=80, ge=1)
    title_max_chars: int = Field(default=50, ge=1)
    background_enrichment: bool = True

    # Titles
    default_title: str = "New Conversation"
    branch_fallback_title: str = "Branched conversation"

    # Input limits
    max_highlight_chars: int = 5000
    max_message_chars: int = 50000
    max_title_chars: int = 200
