"""Navigation state machine package."""

from .service import NavigationService

__all__ = ["NavigationService"]
