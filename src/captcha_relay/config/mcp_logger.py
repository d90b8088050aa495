"""MCP-compatible logger configuration.

This module configures structlog to output JSON-formatted logs that won't
interfere with the MCP protocol communication.
"""

import logging
import os
import sys
from typing import Optional

import structlog


def configure_mcp_logging(level: Optional[str] = None):
    """Configure structlog for MCP server compatibility.
    
    MCP servers communicate via JSON-RPC over stdio. Any non-JSON output
    to stdout will break the protocol, so every log line goes to stderr
    as a single JSON object.
    
    Args:
        level: Minimum log level name. Falls back to ``CAPTCHA_LOG_LEVEL``
            and then to ``INFO``.
    """
    level_name = (level or os.getenv("CAPTCHA_LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    
    # Configure Python's standard logging to use stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    
    structlog.configure(
        processors=[
            # No stdlib processors here: PrintLoggerFactory does not produce
            # stdlib logger objects
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# Configure logging when module is imported
configure_mcp_logging()

# Export configured logger
logger = structlog.get_logger()
