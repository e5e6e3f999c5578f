# FILE: chatrouter/admin/__init__.py
"""Admin and tuning endpoints for the chat router."""
from .router import router

__all__ = ["router"]
