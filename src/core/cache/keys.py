"""
Cache key builders.

Key Templates
-------------
- ``{prefix}:user:{user_id}:progress``   merged progression snapshot
- ``{prefix}:user:{user_id}:fallback``   fields the remote store rejected
- ``{prefix}:user:{user_id}:fallback_base``   remote values offline counter changes were made against
- ``{prefix}:content:{chapter}:{slot}:{content_type}``   pre-warmed content

Every per-user key starts with ``user_prefix(user_id)`` so sign-out can
purge them with one prefix scan.
"""

from __future__ import annotations

from src.core.config import config_str

DEFAULT_KEY_PREFIX = "waypoint:v1"


def key_prefix() -> str:
    return config_str("persistence.key_prefix", DEFAULT_KEY_PREFIX)


def user_prefix(user_id: str) -> str:
    return f"{key_prefix()}:user:{user_id}:"


def progress_key(user_id: str) -> str:
    return f"{user_prefix(user_id)}progress"


def fallback_key(user_id: str) -> str:
    return f"{user_prefix(user_id)}fallback"


def fallback_base_key(user_id: str) -> str:
    return f"{user_prefix(user_id)}fallback_base"


def content_prefix() -> str:
    return f"{key_prefix()}:content:"


def content_key(chapter_id: int, slot_index: int, content_type: str) -> str:
    return f"{content_prefix()}{chapter_id}:{slot_index}:{content_type}"
