"""
Domain models package for Waypoint.

Rich domain models that own progression rules and state transitions.
Database models (``src/database/models``) stay anemic; the persistence layer
converts between the two through snapshots.

- base: Entity, AggregateRoot, DomainEvent and validation helpers
- progression: ProgressionRecord and the module/chapter state machine
- quest: Quest, QuestBook and their value objects
"""

from .base import (
    AggregateRoot,
    DomainEvent,
    DomainValidationError,
    Entity,
    validate_non_negative,
    validate_positive,
)
from .progression import (
    GrantResult,
    ModuleCompletionResult,
    ModuleSlot,
    ProgressionRecord,
    SlotAccess,
    SlotState,
)
from .quest import (
    PROGRESS_MODES,
    ProgressMode,
    Quest,
    QuestBook,
    QuestMetadata,
    QuestPool,
    QuestRewards,
    QuestStatus,
    QuestType,
)

__all__ = [
    "AggregateRoot",
    "DomainEvent",
    "DomainValidationError",
    "Entity",
    "validate_non_negative",
    "validate_positive",
    "GrantResult",
    "ModuleCompletionResult",
    "ModuleSlot",
    "ProgressionRecord",
    "SlotAccess",
    "SlotState",
    "PROGRESS_MODES",
    "ProgressMode",
    "Quest",
    "QuestBook",
    "QuestMetadata",
    "QuestPool",
    "QuestRewards",
    "QuestStatus",
    "QuestType",
]
