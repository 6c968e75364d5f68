"""Protocol-level value types for Tangent.

ContextMessage is the unit of assembled model context. No SQLAlchemy
imports allowed in this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ContextRole = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class ContextMessage:
    """One entry of an assembled prompt, already lowercased for model APIs."""

    role: ContextRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}
