"""
Waypoint Test Suite
===================

Test Organization
-----------------
- tests/unit/          : Fast unit tests over in-memory tiers (no external dependencies)
- tests/unit/domain/   : Pure domain model tests
- tests/integration/   : Integration tests with testcontainers (PostgreSQL, Redis)
- tests/fakes.py       : In-memory tiers, clocks, trackers and content provider

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test progression and quest logic
- Integration tests: Slower, test real infrastructure interactions
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
