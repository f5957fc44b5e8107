"""Conversation memory: chat sessions and their message log."""
from docchat.memory.manager import ConversationManager

__all__ = ["ConversationManager"]
