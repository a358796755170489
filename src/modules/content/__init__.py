"""Pre-warmed slot content."""

from src.modules.content.cache import ContentCache, ContentProvider

__all__ = ["ContentCache", "ContentProvider"]
