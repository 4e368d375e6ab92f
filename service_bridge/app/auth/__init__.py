"""
Authentication helpers for Bridge Service.
"""

from .models import UserSession, StudyParticipant
from .session import SessionAuthenticator

__all__ = [
    "SessionAuthenticator",
    "StudyParticipant",
    "UserSession",
]
