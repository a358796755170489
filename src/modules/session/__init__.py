"""Per-user session context."""

from src.modules.session.context import ProgressionSession

__all__ = ["ProgressionSession"]
