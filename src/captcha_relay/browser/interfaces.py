"""
Browser page interface used by the capture collaborator
Design Pattern: Dependency Inversion Principle
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class IPage(ABC):
    """Interface for a browser page"""

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Execute JavaScript"""
        pass

    @abstractmethod
    async def screenshot(self, path: Optional[str] = None) -> bytes:
        """Take screenshot of the visible viewport"""
        pass
