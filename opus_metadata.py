"""
Application identity and build information.
"""
import os

APP_NAME = "opus-mcp"
APP_TITLE = "OPUS MCP Server"
S3_ARTICLES_BUCKET = APP_NAME + "-articles"

# Stamped by the release pipeline through the environment
BUILD_VERSION = os.environ.get(
    "OPUS_MCP_BUILD_VERSION",
    "uninitialised; set OPUS_MCP_BUILD_VERSION at build time",
)
BUILD_TIME = os.environ.get(
    "OPUS_MCP_BUILD_TIME",
    "uninitialised; set OPUS_MCP_BUILD_TIME at build time",
)

# Set server metadata for self-awareness
SERVER_METADATA = {
    "name": APP_NAME,
    "title": APP_TITLE,
    "version": BUILD_VERSION,
    "build_time": BUILD_TIME,
    "description": "Research data retrieval tools for arXiv over the Model Context Protocol",
    "capabilities": [
        "arxiv_category_fetch_latest",
        "arxiv_category_taxonomy",
        "arxiv_download_pdf",
    ],
}
