"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampBase
from .session import ConversationSession
from .booth_app import BoothApp, KnowledgeDocument, AppDocument
from .lead import Lead

__all__ = [
    "TimestampBase",
    "ConversationSession",
    "BoothApp", "KnowledgeDocument", "AppDocument",
    "Lead",
]
