"""Chat turn orchestration, history, persistence, and transport."""

from .history import build_history
from .orchestrator import ConversationOrchestrator, TurnContext, TurnOutcome, TurnState
from .repository import ChatMessage, ChatRepository, InMemoryRepository
from .transport import QueueTransport, Transport, encode_sse

__all__ = [
    "ChatMessage",
    "ChatRepository",
    "ConversationOrchestrator",
    "InMemoryRepository",
    "QueueTransport",
    "Transport",
    "TurnContext",
    "TurnOutcome",
    "TurnState",
    "build_history",
    "encode_sse",
]
