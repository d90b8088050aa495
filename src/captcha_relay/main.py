"""
captcha-relay - Main entry point
Runs the recognition engine as an MCP server speaking JSON-RPC over stdio.
"""
from captcha_relay.config.mcp_logger import logger
from captcha_relay.mcp_server.server import create_server


def run():
    """Entry point for the console script"""
    server = create_server()
    logger.info("starting_mcp_server", transport="stdio")
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("shutting_down")


if __name__ == "__main__":
    run()
