"""
Quest subsystem: template-driven generation, the per-session engine and
activity trackers.
"""

from src.modules.quests.engine import ProgressSnapshot, QuestEngine, QuestProgressResult
from src.modules.quests.generator import QuestGenerator, QuestTemplate
from src.modules.quests.trackers import ActivityTracker, InMemoryActivityTracker

__all__ = [
    "ActivityTracker",
    "InMemoryActivityTracker",
    "ProgressSnapshot",
    "QuestEngine",
    "QuestGenerator",
    "QuestProgressResult",
    "QuestTemplate",
]
