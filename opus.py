# Public API of the OPUS MCP server
from category_parser import (
    EmptyExpressionError,
    ExpressionParser,
    parse_category_expression,
    parse_general_expression,
)
from opus_main import (
    ArxivError,
    ToolContext,
    build_server,
    category_fetch_latest,
    download_pdf,
    fetch_category_taxonomy,
)
from opus_storage import StorageError

__all__ = [
    'EmptyExpressionError',
    'ExpressionParser',
    'parse_category_expression',
    'parse_general_expression',
    'ArxivError',
    'ToolContext',
    'build_server',
    'category_fetch_latest',
    'download_pdf',
    'fetch_category_taxonomy',
    'StorageError',
]
