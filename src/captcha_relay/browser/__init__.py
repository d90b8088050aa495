"""Browser-side capture collaborator."""

from .capture import PageCapture
from .interfaces import IPage

__all__ = ["IPage", "PageCapture"]
