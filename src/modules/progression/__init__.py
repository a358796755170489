"""Module/chapter progression and reward grants."""

from src.modules.progression.service import ProgressionService

__all__ = ["ProgressionService"]
