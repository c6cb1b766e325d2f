"""
Persistence for completed sessions.
"""

from storage.conversations import ConversationStore

__all__ = ["ConversationStore"]
