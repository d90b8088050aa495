"""Result cache keyed by image fingerprint.

Recognized text is only trusted once something downstream confirms it (for
example a login that went through). Until then the latest result is held as
a single pending candidate; a newer candidate replaces it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from captcha_relay.config.mcp_logger import logger
from captcha_relay.interfaces import ICacheStorage


@dataclass
class CacheEntry:
    """A recognized string for one normalized image."""
    fingerprint: str
    text: str
    created_at: datetime = field(default_factory=datetime.now)
    confirmed: bool = False


class ResultCache:
    """Fingerprint -> text cache with a single-slot pending candidate."""
    
    def __init__(self, storage: ICacheStorage):
        self.storage = storage
        self._pending: Optional[CacheEntry] = None
        self.logger = logger.bind(component="result_cache")
    
    @property
    def pending(self) -> Optional[CacheEntry]:
        return self._pending
    
    async def get(self, fingerprint: str) -> Optional[str]:
        """Return confirmed text for a fingerprint, if any.
        
        The pending candidate is never returned: it is not indexed.
        """
        entry = await self.storage.load(fingerprint)
        if entry is None:
            return None
        self.logger.info("cache_hit", fingerprint=fingerprint[:12])
        return entry.text
    
    def set_pending_candidate(self, fingerprint: str, text: str) -> None:
        """Hold a fresh result until it is confirmed or replaced."""
        if self._pending is not None:
            self.logger.debug(
                "pending_candidate_replaced",
                previous=self._pending.fingerprint[:12]
            )
        self._pending = CacheEntry(fingerprint=fingerprint, text=text)
        self.logger.debug("pending_candidate_set", fingerprint=fingerprint[:12])
    
    async def commit_pending(self) -> bool:
        """Promote the pending candidate into durable storage.
        
        Returns:
            True if a candidate was stored, False if nothing was pending or
            the storage refused the write.
        """
        entry = self._pending
        if entry is None:
            self.logger.debug("commit_without_pending_candidate")
            return False
        
        entry.confirmed = True
        saved = await self.storage.save(entry)
        if saved:
            self._pending = None
            self.logger.info("pending_candidate_committed", fingerprint=entry.fingerprint[:12])
        else:
            entry.confirmed = False
            self.logger.warning("pending_candidate_commit_failed", fingerprint=entry.fingerprint[:12])
        return saved
    
    def discard_pending(self) -> None:
        self._pending = None
    
    def get_status(self) -> Dict[str, Any]:
        return {
            "storage": self.storage.__class__.__name__,
            "pending": self._pending.fingerprint if self._pending else None,
        }
