"""MCP tools exposed by captcha-relay."""

from .captcha_tools import register_captcha_tools

__all__ = ["register_captcha_tools"]
