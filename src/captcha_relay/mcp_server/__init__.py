"""MCP server surface for captcha-relay."""

from .server import create_server

__all__ = ["create_server"]
