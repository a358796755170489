"""
Shared building blocks for Waypoint modules.

Submodules are imported directly (``from src.modules.shared.formulas import
level_for_experience``); this package stays import-light so that domain
models can use the constants and formulas without pulling in services.

- constants: progression constants and the experience reward table
- formulas: level curve and quest scaling (pure functions)
- exceptions: WaypointDomainException hierarchy
- base_service: BaseService for session-scoped services
"""
