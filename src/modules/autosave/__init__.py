"""Autosave scheduling for session state."""

from src.modules.autosave.scheduler import AutosaveScheduler, LifecycleState

__all__ = ["AutosaveScheduler", "LifecycleState"]
