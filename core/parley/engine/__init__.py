"""Engine module - conversation orchestration and the model backend."""

from parley.engine.backend import (
    BackendError,
    GeminiBackend,
    ModelBackend,
    NetworkError,
    ParseError,
    Turn,
)
from parley.engine.orchestrator import ConversationOrchestrator, PanelState

__all__ = [
    "BackendError",
    "ConversationOrchestrator",
    "GeminiBackend",
    "ModelBackend",
    "NetworkError",
    "PanelState",
    "ParseError",
    "Turn",
]
