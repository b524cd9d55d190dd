"""
Persistence package exposing the per-target session cache.
"""

from .session_store import SessionStore

__all__ = ["SessionStore"]
