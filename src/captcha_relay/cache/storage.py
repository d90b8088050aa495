"""Storage backends for confirmed recognition results.

- InMemoryCacheStorage: dictionary storage, lost when the process exits
- EncryptedCacheStorage: one Fernet-encrypted file per fingerprint on disk
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from captcha_relay.config.mcp_logger import logger
from captcha_relay.interfaces import ICacheStorage

from .result_cache import CacheEntry


class InMemoryCacheStorage(ICacheStorage):
    """In-memory cache storage.
    
    Mainly useful for tests and for running without a cache directory.
    """
    
    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self.logger = logger.bind(storage="memory")
    
    async def save(self, entry: CacheEntry) -> bool:
        self._entries[entry.fingerprint] = entry
        self.logger.debug("cache_entry_saved", fingerprint=entry.fingerprint[:12])
        return True
    
    async def load(self, fingerprint: str) -> Optional[CacheEntry]:
        return self._entries.get(fingerprint)
    
    async def delete(self, fingerprint: str) -> bool:
        if fingerprint in self._entries:
            del self._entries[fingerprint]
            return True
        return False
    
    def __len__(self) -> int:
        return len(self._entries)


class EncryptedCacheStorage(ICacheStorage):
    """Encrypted, persistent cache storage.
    
    Entries are serialized to JSON, encrypted with Fernet and written to
    ``entry_<fingerprint>.enc``. Files and the generated key file are created
    with 0600 permissions.
    
    Attributes:
        storage_path: Directory holding the encrypted entries.
        fernet: Fernet instance used for both directions.
    """
    
    KEY_FILE = ".encryption_key"
    
    def __init__(self, storage_path: Union[str, Path], encryption_key: Optional[Union[str, bytes]] = None):
        """Initialize the encrypted storage backend.
        
        Args:
            storage_path: Directory for entries, created if missing.
            encryption_key: Fernet key. When omitted, a key saved by an
                earlier run is reused, or a new one is generated and saved.
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(storage="encrypted", path=str(self.storage_path))
        
        if encryption_key:
            self.fernet = Fernet(
                encryption_key.encode() if isinstance(encryption_key, str) else encryption_key
            )
        else:
            self.fernet = Fernet(self._load_or_create_key())
    
    def _load_or_create_key(self) -> bytes:
        key_path = self.storage_path / self.KEY_FILE
        if key_path.exists():
            return key_path.read_bytes()
        
        key = Fernet.generate_key()
        key_path.write_bytes(key)
        os.chmod(key_path, 0o600)
        self.logger.info("encryption_key_saved")
        return key
    
    def _get_entry_path(self, fingerprint: str) -> Path:
        # Fingerprints are hex digests; anything else is reduced to alphanumerics
        safe = "".join(ch for ch in fingerprint if ch.isalnum())
        return self.storage_path / f"entry_{safe}.enc"
    
    @staticmethod
    def _serialize(entry: CacheEntry) -> Dict[str, Any]:
        return {
            "fingerprint": entry.fingerprint,
            "text": entry.text,
            "created_at": entry.created_at.isoformat(),
            "confirmed": entry.confirmed
        }
    
    @staticmethod
    def _deserialize(data: Dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            fingerprint=data["fingerprint"],
            text=data["text"],
            created_at=datetime.fromisoformat(data["created_at"]),
            confirmed=data.get("confirmed", True)
        )
    
    async def save(self, entry: CacheEntry) -> bool:
        try:
            payload = json.dumps(self._serialize(entry)).encode()
            entry_path = self._get_entry_path(entry.fingerprint)
            entry_path.write_bytes(self.fernet.encrypt(payload))
            os.chmod(entry_path, 0o600)
            self.logger.info("cache_entry_saved_encrypted", fingerprint=entry.fingerprint[:12])
            return True
        except OSError as e:
            self.logger.error("cache_entry_save_error", error=str(e), exc_info=True)
            return False
    
    async def load(self, fingerprint: str) -> Optional[CacheEntry]:
        entry_path = self._get_entry_path(fingerprint)
        if not entry_path.exists():
            return None
        
        try:
            decrypted = self.fernet.decrypt(entry_path.read_bytes())
            return self._deserialize(json.loads(decrypted.decode()))
        except (InvalidToken, OSError, ValueError, KeyError) as e:
            # Tampered file, wrong key or corrupted JSON all read as a miss
            self.logger.error(
                "cache_entry_load_error",
                error=str(e) or e.__class__.__name__,
                fingerprint=fingerprint[:12]
            )
            return None
    
    async def delete(self, fingerprint: str) -> bool:
        entry_path = self._get_entry_path(fingerprint)
        if entry_path.exists():
            entry_path.unlink()
            self.logger.info("cache_entry_deleted", fingerprint=fingerprint[:12])
            return True
        return False
