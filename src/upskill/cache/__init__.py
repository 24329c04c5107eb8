"""
Version cache -- installed vs. latest version ledger.
"""

from .versions import VersionCache, VersionCacheEntry, is_breaking

__all__ = ["VersionCache", "VersionCacheEntry", "is_breaking"]
