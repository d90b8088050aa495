"""Captcha tools for the MCP server.

These tools are the outer surface of the recognition engine: solving a
captcha from a screenshot, confirming the last solve (which commits it to
the cache), and reporting failover status.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from captcha_relay.captcha.credentials import EnvCredentialStore
from captcha_relay.captcha.factory import create_orchestrator
from captcha_relay.captcha.orchestrator import CaptchaOrchestrator
from captcha_relay.config.mcp_logger import logger
from captcha_relay.config.settings import load_settings
from captcha_relay.errors import CaptchaError, CaptchaExhaustedError
from captcha_relay.imaging.normalizer import CropRegion

_orchestrator_instance: Optional[CaptchaOrchestrator] = None


def _get_orchestrator() -> CaptchaOrchestrator:
    """Get or create the orchestrator shared by the tools of this server."""
    global _orchestrator_instance
    
    if _orchestrator_instance is None:
        _orchestrator_instance = create_orchestrator(load_settings(), EnvCredentialStore())
    
    return _orchestrator_instance


async def close_orchestrator() -> None:
    """Close the shared orchestrator, if one was created."""
    global _orchestrator_instance
    
    if _orchestrator_instance is not None:
        await _orchestrator_instance.close()
        _orchestrator_instance = None


def _error_result(error: CaptchaError, status: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": error.kind.value if error.kind else "error",
        "message": str(error),
        "status": status,
        "timestamp": datetime.now().isoformat()
    }


def register_captcha_tools(mcp: FastMCP):
    """Register captcha tools with the MCP server."""
    
    @mcp.tool()
    async def solve_captcha(
        image: str,
        x: float,
        y: float,
        width: float,
        height: float,
        device_pixel_ratio: float = 1.0
    ) -> Dict[str, Any]:
        """Recognize the captcha text inside a region of a screenshot.
        
        Args:
            image: Full viewport screenshot as base64 or a data URL
            x: Left edge of the captcha in CSS pixels
            y: Top edge of the captcha in CSS pixels
            width: Captcha width in CSS pixels
            height: Captcha height in CSS pixels
            device_pixel_ratio: Screen pixels per CSS pixel
            
        Returns:
            Dictionary with the recognized text and a status tag
        """
        orchestrator = _get_orchestrator()
        region = CropRegion(x, y, width, height, device_pixel_ratio)
        
        try:
            result = await orchestrator.solve(image, region)
        except CaptchaExhaustedError as e:
            logger.error("solve_captcha_exhausted", error=str(e))
            return _error_result(e, e.status)
        except CaptchaError as e:
            logger.error("solve_captcha_error", error=str(e), exc_info=True)
            return _error_result(e, orchestrator.state_machine.status_indicator())
        
        return {
            "success": True,
            "text": result.text,
            "status": result.status,
            "cached": result.cached,
            "fingerprint": result.fingerprint,
            "timestamp": datetime.now().isoformat()
        }
    
    @mcp.tool()
    async def report_login_success() -> Dict[str, Any]:
        """Confirm that the last solved captcha was accepted.
        
        Returns:
            Dictionary telling whether a pending result was committed
        """
        committed = await _get_orchestrator().confirm_last_solve()
        logger.info("login_success_reported", committed=committed)
        return {
            "success": True,
            "committed": committed,
            "timestamp": datetime.now().isoformat()
        }
    
    @mcp.tool()
    async def captcha_status() -> Dict[str, Any]:
        """Get the current failover tier, provider and cache state."""
        return _get_orchestrator().get_status()
    
    @mcp.tool()
    async def reset_failover() -> Dict[str, Any]:
        """Return to the first provider of tier 1 immediately."""
        orchestrator = _get_orchestrator()
        orchestrator.state_machine.reset()
        return {
            "success": True,
            "status": orchestrator.state_machine.status_indicator(),
            "timestamp": datetime.now().isoformat()
        }
