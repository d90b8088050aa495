"""Result cache for recognized captcha text.

Confirmed results are persisted through a storage backend so the same image
is never sent to a provider twice:
- ResultCache: fingerprint lookups plus the single pending candidate
- EncryptedCacheStorage: Fernet-encrypted files on disk
- InMemoryCacheStorage: dictionary storage for tests and ephemeral runs
"""

from .result_cache import CacheEntry, ResultCache
from .storage import EncryptedCacheStorage, InMemoryCacheStorage

__all__ = ["CacheEntry", "EncryptedCacheStorage", "InMemoryCacheStorage", "ResultCache"]
