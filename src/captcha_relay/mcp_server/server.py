"""
MCP server assembly
Exposes the recognition engine as MCP tools over stdio.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from mcp.server.fastmcp import FastMCP

from captcha_relay.config.mcp_logger import logger

from .tools.captcha_tools import close_orchestrator, register_captcha_tools

SERVER_NAME = "captcha-relay"


@asynccontextmanager
async def captcha_lifespan(server: FastMCP) -> AsyncIterator[Dict]:
    """Close the shared orchestrator (and its HTTP session) on shutdown"""
    try:
        yield {}
    finally:
        await close_orchestrator()
        logger.info("mcp_server_stopped", name=SERVER_NAME)


def create_server() -> FastMCP:
    """Build the FastMCP server with every captcha tool registered"""
    mcp = FastMCP(SERVER_NAME, lifespan=captcha_lifespan)
    register_captcha_tools(mcp)
    logger.info("mcp_server_created", name=SERVER_NAME)
    return mcp
