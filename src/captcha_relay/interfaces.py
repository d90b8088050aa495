"""Interfaces for the captcha recognition system.

This module defines the contracts shared by provider adapters, credential
stores, cache storage backends and capture sources. Concrete classes live in
their own modules; the orchestrator only depends on these abstractions.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from captcha_relay.cache.result_cache import CacheEntry
    from captcha_relay.imaging.normalizer import NormalizedImage


class IRecognitionProvider(ABC):
    """Interface for a text recognition backend.
    
    A provider turns a normalized captcha image into a short alphanumeric
    token. Whether the backend answers in one round trip or through a
    submit/poll job is an internal detail of the implementation.
    """
    
    name: str
    timeout: float
    
    @abstractmethod
    async def recognize(self, image: "NormalizedImage") -> str:
        """Recognize the text in an image.
        
        Args:
            image: Cropped, rescaled and encoded captcha image.
        
        Returns:
            The cleaned captcha text.
        
        Raises:
            ProviderError: With a kind describing why recognition failed.
        """
        pass


class ICredentialStore(ABC):
    """Source of per-provider secrets."""
    
    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        """Return the secret stored under ``name`` or None when absent."""
        pass


class ICacheStorage(ABC):
    """Durable key-value storage for confirmed recognition results."""
    
    @abstractmethod
    async def load(self, fingerprint: str) -> Optional["CacheEntry"]:
        """Load the entry stored for a fingerprint."""
        pass
    
    @abstractmethod
    async def save(self, entry: "CacheEntry") -> bool:
        """Persist an entry. Returns True on success."""
        pass
    
    @abstractmethod
    async def delete(self, fingerprint: str) -> bool:
        """Remove an entry. Returns True if something was deleted."""
        pass


class ICaptureSource(ABC):
    """Supplies a full-frame capture on demand."""
    
    @abstractmethod
    async def capture(self) -> Union[bytes, str]:
        """Capture the current frame.
        
        Returns:
            Encoded image bytes or a ``data:`` URL.
        
        Raises:
            CaptureError: With the collaborator's error message.
        """
        pass
