"""Conversation session state."""

from .followup import FollowUp, answer_follow_up, detect_follow_up
from .service import InMemorySessionStore, SessionStore

__all__ = ["FollowUp", "InMemorySessionStore", "SessionStore", "answer_follow_up", "detect_follow_up"]
