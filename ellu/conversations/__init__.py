"""Server-side conversation sessions and export."""

from .manager import (
    ConversationManager,
    ConversationSession,
    Message,
    generate_session_title,
    get_conversation_manager,
    EXPORT_FORMATS,
)

__all__ = [
    "ConversationManager",
    "ConversationSession",
    "Message",
    "generate_session_title",
    "get_conversation_manager",
    "EXPORT_FORMATS",
]
