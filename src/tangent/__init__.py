"""Tangent: branching conversation threads for LLM chat.

Any highlighted span of a conversation can open a tangent thread that
inherits context up to that point. Tangents nest, merge back into their
parent with a generated summary, get archived, or branch off into a
standalone conversation.
"""

from tangent._version import __version__

# Core entry point
from tangent.workspace import Workspace

# Configuration
from tangent.models.config import TangentConfig

# Thread-tree models
from tangent.models.thread import (
    ConversationInfo,
    MergeEventInfo,
    MessageInfo,
    MessageRole,
    ThreadInfo,
    ThreadStatus,
)
from tangent.models.results import (
    BranchResult,
    CloseResult,
    ConversationTree,
    ThreadDetail,
)

# Context assembly output
from tangent.protocols import ContextMessage

# Navigation state machine
from tangent.navigation import (
    ROOT,
    NavigationState,
    TangentNavigator,
    TangentWindow,
    check_invariants,
    reconstruct_tangent_windows,
    reduce,
)

# Exceptions
from tangent.exceptions import (
    DependencyFailureError,
    InvalidStateError,
    NotFoundError,
    TangentError,
    TangentValidationError,
)

# Summary generator protocol
from tangent.llm.protocols import LLMClient, Summarizer

__all__ = [
    "__version__",
    "Workspace",
    "TangentConfig",
    "ConversationInfo",
    "ThreadInfo",
    "MessageInfo",
    "MergeEventInfo",
    "ThreadStatus",
    "MessageRole",
    "ConversationTree",
    "ThreadDetail",
    "BranchResult",
    "CloseResult",
    "ContextMessage",
    "ROOT",
    "NavigationState",
    "TangentNavigator",
    "TangentWindow",
    "reduce",
    "check_invariants",
    "reconstruct_tangent_windows",
    "TangentError",
    "NotFoundError",
    "InvalidStateError",
    "TangentValidationError",
    "DependencyFailureError",
    "LLMClient",
    "Summarizer",
]
