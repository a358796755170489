"""
Waypoint feature modules.

- shared: constants, formulas, exceptions, BaseService
- progression: module/chapter progression and reward grants
- quests: quest generation, renewal and progress routing
- persistence: tiered read/write reconciliation
- autosave: dirty tracking and periodic flushes
- content: pre-warmed module content cache
- session: per-user context wiring everything together
"""
