"""Capture collaborator backed by a browser page.

The recognition engine never takes screenshots itself. This adapter asks a
page for a viewport screenshot and, optionally, for the bounding rectangle of
the captcha element so the normalizer knows where to crop.
"""

import json
from typing import Union

from captcha_relay.config.mcp_logger import logger
from captcha_relay.errors import CaptureError
from captcha_relay.imaging.normalizer import CropRegion
from captcha_relay.interfaces import ICaptureSource

from .interfaces import IPage

_RECT_SCRIPT = """
    () => {{
        const el = document.querySelector({selector});
        if (!el) return null;
        const rect = el.getBoundingClientRect();
        return {{
            x: rect.left,
            y: rect.top,
            width: rect.width,
            height: rect.height,
            dpr: window.devicePixelRatio || 1
        }};
    }}
"""


class PageCapture(ICaptureSource):
    """Full-viewport capture of a browser page."""
    
    def __init__(self, page: IPage):
        self.page = page
        self.logger = logger.bind(component="page_capture")
    
    async def capture(self) -> Union[bytes, str]:
        try:
            frame = await self.page.screenshot()
        except Exception as e:
            # Any driver failure is reported as a capture error string
            self.logger.error("capture_failed", error=str(e))
            raise CaptureError(f"CAPTURE_FAILED: {e}") from e
        
        if not frame:
            raise CaptureError("CAPTURE_FAILED: empty screenshot")
        return frame
    
    async def region_for(self, selector: str) -> CropRegion:
        """Bounding rectangle of the element matching ``selector``.
        
        Raises:
            CaptureError: If no element matches.
        """
        rect = await self.page.evaluate(_RECT_SCRIPT.format(selector=json.dumps(selector)))
        if not rect:
            raise CaptureError(f"Captcha element not found: {selector}")
        
        return CropRegion(
            x=rect["x"],
            y=rect["y"],
            width=rect["width"],
            height=rect["height"],
            device_pixel_ratio=rect.get("dpr") or 1.0
        )
