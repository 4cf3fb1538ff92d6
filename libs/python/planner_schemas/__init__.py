"""Shared schema exports."""

from .account import AccountPublic
from .errors import ErrorEnvelope

__all__ = [
    "AccountPublic",
    "ErrorEnvelope",
]
