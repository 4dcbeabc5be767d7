"""
Shared helpers for bridgesync.
"""

from .timed_cache import TimedCache
from .keyed_lock import KeyedLock
from .once import OnceCache
from .patterns import apply_pattern_string

__all__ = ["TimedCache", "KeyedLock", "OnceCache", "apply_pattern_string"]
