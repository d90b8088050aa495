"""Configuration for captcha-relay: structured logging and runtime settings."""

from .mcp_logger import configure_mcp_logging, logger
from .settings import CaptchaSettings, load_settings

__all__ = ["CaptchaSettings", "configure_mcp_logging", "load_settings", "logger"]
