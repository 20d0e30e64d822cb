"""
arXiv research tools exposed over the Model Context Protocol.

The tools share one ToolContext (HTTP client, rate limiter, storage settings)
which is handed to build_server() instead of living in module globals.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import quote

import feedparser
import httpx
from bs4 import BeautifulSoup
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from category_parser import EmptyExpressionError, parse_category_expression
from opus_config import HTTPClientSettings, S3Settings
from opus_http import RateLimiter, create_http_client
from opus_metadata import APP_NAME, APP_TITLE, SERVER_METADATA
from opus_storage import StorageError, UploadResult, create_s3_client, download_url_to_bucket

logger = logging.getLogger(__name__)

# Constants
ARXIV_API_BASE = "https://export.arxiv.org/api/query"
ARXIV_TAXONOMY_URL = "https://arxiv.org/category_taxonomy"
ARXIV_PDF_BASE = "https://arxiv.org/pdf/"

MAX_EXPRESSION_LENGTH = 512
DEFAULT_FETCH_SIZE = 10
MAX_FETCH_SIZE = 200

# Archives listed under the "Physics" group of the taxonomy
PHYSICS_ARCHIVES = {
    "astro-ph", "cond-mat", "gr-qc", "hep-ex", "hep-lat", "hep-ph", "hep-th",
    "math-ph", "nlin", "nucl-ex", "nucl-th", "physics", "quant-ph",
}

ARXIV_ID_PATTERN = re.compile(
    r"^(?:\d{4}\.\d{4,5}|[a-z][a-z\-]*(?:\.[A-Z]{2})?/\d{7})(?:v\d+)?$"
)


class ArxivError(RuntimeError):
    """Raised when arXiv cannot be reached or returns something unusable."""


@dataclass
class ToolContext:
    """Dependencies shared by the tool handlers."""

    http_client: httpx.AsyncClient
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    s3_settings: S3Settings = field(default_factory=S3Settings)
    s3_client_factory: Callable[[S3Settings], Any] = create_s3_client

    @classmethod
    def from_env(cls) -> "ToolContext":
        return cls(
            http_client=create_http_client(HTTPClientSettings()),
            s3_settings=S3Settings(),
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()


async def _get(context: ToolContext, url: str) -> httpx.Response:
    """Rate-limited GET. Errors are returned immediately, never retried."""
    await context.rate_limiter.wait()
    logger.info(f"Fetching {url}")
    try:
        response = await context.http_client.get(url)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ArxivError(f"arXiv responded with status {e.response.status_code} for {url}") from e
    except httpx.HTTPError as e:
        raise ArxivError(f"failed to fetch from arXiv: {e}") from e
    return response


# ================== LATEST PUBLICATIONS ==================

def build_search_url(search_query: str, start_index: int, fetch_size: int) -> str:
    """
    Build the arXiv API URL. "+" stands for a space in the arXiv query
    syntax and is kept, as are ":" and parentheses; anything else that could
    end the parameter ("&", "#", "=") is percent-encoded.
    """
    return (
        f"{ARXIV_API_BASE}?search_query={quote(search_query, safe='+:()')}"
        f"&start={start_index}&max_results={fetch_size}"
        "&sortBy=submittedDate&sortOrder=descending"
    )


def _arxiv_id_from_url(entry_id: str) -> str:
    """'http://arxiv.org/abs/2310.12345v1' -> '2310.12345v1'"""
    if "/abs/" in entry_id:
        return entry_id.split("/abs/", 1)[1]
    return entry_id.rstrip("/").split("/")[-1]


def _entry_to_paper(entry: Any) -> Dict[str, Any]:
    paper = {
        "id": entry.get("id"),
        "arxiv_id": _arxiv_id_from_url(entry.get("id", "")),
        "title": " ".join(entry.get("title", "").split()),
        "summary": " ".join(entry.get("summary", "").split()),
        "authors": [author.get("name") for author in entry.get("authors", []) if author.get("name")],
        "published": entry.get("published"),
        "updated": entry.get("updated"),
        "categories": [tag.get("term") for tag in entry.get("tags", []) if tag.get("term")],
        "primary_category": (entry.get("arxiv_primary_category") or {}).get("term"),
        "abs_url": None,
        "pdf_url": None,
    }

    # Extract abstract and PDF links
    for link in entry.get("links", []):
        if link.get("title") == "pdf":
            paper["pdf_url"] = link.get("href")
        elif link.get("rel") == "alternate":
            paper["abs_url"] = link.get("href")
    return paper


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_feed(xml_data: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse an arXiv Atom response into a JSON-ready dictionary.

    Raises:
        ArxivError: if the feed is malformed or arXiv reports a query error
    """
    parsed = feedparser.parse(xml_data)
    if parsed.bozo and not parsed.entries and not parsed.feed:
        raise ArxivError(f"failed to parse feed: {parsed.get('bozo_exception')}")

    entries = parsed.entries
    # arXiv reports bad queries as a single entry pointing at its error page
    if len(entries) == 1 and "/api/errors" in entries[0].get("id", ""):
        raise ArxivError(f"arXiv rejected the query: {entries[0].get('summary', '').strip()}")

    feed = parsed.feed
    return {
        "title": feed.get("title"),
        "updated": feed.get("updated"),
        "total_results": _int_or_none(feed.get("opensearch_totalresults")),
        "start_index": _int_or_none(feed.get("opensearch_startindex")),
        "items_per_page": _int_or_none(feed.get("opensearch_itemsperpage")),
        "entries": [_entry_to_paper(entry) for entry in entries],
    }


async def category_fetch_latest(context: ToolContext, category: str, start_index: int = 0,
                                fetch_size: int = DEFAULT_FETCH_SIZE) -> Dict[str, Any]:
    """
    Fetch the latest publications for a boolean category expression.

    Args:
        context: Shared tool dependencies
        category: Expression such as "cs.AI or (cs.LG not cs.CV)"
        start_index: 0-based offset into the result list
        fetch_size: Number of results to fetch

    Returns:
        Feed dictionary as produced by parse_feed, plus the search query used
    """
    search_query = parse_category_expression(category)
    url = build_search_url(search_query, start_index, fetch_size)
    response = await _get(context, url)

    feed = parse_feed(response.content)
    feed["search_query"] = search_query
    logger.info(f"Fetched {len(feed['entries'])} publications for {search_query}")
    return feed


# ================== CATEGORY TAXONOMY ==================

def derive_group_code(category_code: str) -> str:
    """
    Map a category code to its taxonomy group.

    Examples: "cs.AI" -> "cs", "q-bio.BM" -> "q-bio", "hep-th" -> "physics",
    "physics.optics" -> "physics".
    """
    archive = category_code.split(".", 1)[0]
    if archive in PHYSICS_ARCHIVES:
        return "physics"
    return archive


def _split_heading(heading: Any) -> Optional[Dict[str, str]]:
    """'<h4>cs.AI <span>(Artificial Intelligence)</span></h4>' -> code and name."""
    span = heading.find("span")
    name = span.get_text(" ", strip=True) if span else ""
    code = "".join(heading.find_all(string=True, recursive=False)).strip()
    if not code:
        return None
    return {"code": code, "name": name.strip().strip("()").strip()}


def _category_description(heading: Any) -> str:
    column = heading.find_parent("div", class_="column")
    if column is None:
        return ""
    description = column.find_next_sibling("div", class_="column")
    return description.get_text(" ", strip=True) if description else ""


def parse_taxonomy(html: str) -> Dict[str, Dict[str, Dict[str, str]]]:
    """
    Parse the arXiv category taxonomy page into groups and categories.

    Returns:
        {"groups": {code: {"code", "name"}},
         "categories": {code: {"code", "name", "group", "description"}}}
    """
    soup = BeautifulSoup(html, "html.parser")
    root = soup.find(id="category_taxonomy_list") or soup

    groups: Dict[str, Dict[str, str]] = {}
    categories: Dict[str, Dict[str, str]] = {}

    for group_heading in root.find_all("h2", class_="accordion-head"):
        group_name = group_heading.get_text(" ", strip=True)
        body = group_heading.find_next_sibling("div", class_="accordion-body")
        if body is None:
            continue

        for heading in body.find_all("h4"):
            description = _category_description(heading)
            category = _split_heading(heading)
            if category is None:
                continue
            group_code = derive_group_code(category["code"])
            category["group"] = group_code
            category["description"] = description
            categories[category["code"]] = category
            groups.setdefault(group_code, {"code": group_code, "name": group_name})

    return {"groups": groups, "categories": categories}


async def fetch_category_taxonomy(context: ToolContext) -> Dict[str, Any]:
    """Download and parse the arXiv category taxonomy."""
    response = await _get(context, ARXIV_TAXONOMY_URL)
    taxonomy = parse_taxonomy(response.text)
    if not taxonomy["categories"]:
        raise ArxivError("no categories found on the arXiv taxonomy page")

    logger.info(
        f"Fetched taxonomy with {len(taxonomy['groups'])} groups "
        f"and {len(taxonomy['categories'])} categories"
    )
    return taxonomy


# ================== PDF DOWNLOAD ==================

def normalize_arxiv_id(value: str) -> str:
    """
    Accept "2310.12345", "arXiv:2310.12345v2" or an abs/pdf URL and return
    the bare identifier.

    Raises:
        ValueError: if the value is not an arXiv identifier
    """
    arxiv_id = value.strip()
    if arxiv_id.lower().startswith("arxiv:"):
        arxiv_id = arxiv_id[len("arxiv:"):]
    for marker in ("/abs/", "/pdf/"):
        if marker in arxiv_id:
            arxiv_id = arxiv_id.split(marker, 1)[1]
    if arxiv_id.endswith(".pdf"):
        arxiv_id = arxiv_id[:-len(".pdf")]

    if not ARXIV_ID_PATTERN.match(arxiv_id):
        raise ValueError(f"invalid arXiv identifier: {value!r}")
    return arxiv_id


async def download_pdf(context: ToolContext, arxiv_id: str,
                       object_name: Optional[str] = None) -> UploadResult:
    """
    Store the PDF of an arXiv paper in the articles bucket.

    Args:
        context: Shared tool dependencies
        arxiv_id: Paper identifier, optionally with version
        object_name: Object key, defaults to "<id>.pdf"
    """
    if not context.s3_settings.configured:
        raise StorageError(
            "object storage is not configured; set OPUS_MCP_S3_ENDPOINT, "
            "OPUS_MCP_S3_ACCESS_KEY and OPUS_MCP_S3_SECRET_KEY"
        )

    arxiv_id = normalize_arxiv_id(arxiv_id)
    object_name = object_name or arxiv_id.replace("/", "_") + ".pdf"
    source_url = ARXIV_PDF_BASE + arxiv_id

    s3_client = context.s3_client_factory(context.s3_settings)
    await context.rate_limiter.wait()
    return await download_url_to_bucket(
        context.http_client, s3_client, source_url,
        context.s3_settings.bucket, object_name,
    )


# ================== MCP SERVER ==================

def build_server(context: ToolContext) -> FastMCP:
    """Create the MCP server and register the tools bound to ``context``."""
    mcp = FastMCP(
        APP_NAME,
        instructions=f"{APP_TITLE}: research data retrieval tools for arXiv.",
        stateless_http=True,
        json_response=True,
    )

    @mcp.resource("opus://info")
    def get_server_info() -> str:
        """Get information about the OPUS MCP server"""
        return json.dumps(SERVER_METADATA, indent=2)

    @mcp.tool()
    async def arxiv_category_fetch_latest(
        category: str = Field(
            min_length=1,
            max_length=MAX_EXPRESSION_LENGTH,
            description=(
                "Boolean expression of arXiv categories, e.g. 'cs.AI or (cs.LG not cs.CV)'. "
                "Juxtaposed categories are combined with AND; '+', '|' and '-' are "
                "shorthands for AND, OR and NOT. See https://arxiv.org/category_taxonomy"
            ),
        ),
        start_index: int = Field(default=0, ge=0, description="The 0-based index of the first result"),
        fetch_size: int = Field(
            default=DEFAULT_FETCH_SIZE, ge=1, le=MAX_FETCH_SIZE,
            description="The number of results to fetch",
        ),
    ) -> Dict[str, Any]:
        """Fetch latest publications from arXiv by category"""
        try:
            return await category_fetch_latest(context, category, start_index, fetch_size)
        except EmptyExpressionError as e:
            logger.warning(f"Invalid category expression {category!r}: {e}")
            raise ToolError(f"failed to parse category expression: {e}") from e
        except ArxivError as e:
            logger.warning(f"Category fetch failed: {e}")
            raise ToolError(str(e)) from e

    @mcp.tool()
    async def arxiv_category_taxonomy() -> Dict[str, Any]:
        """Fetch the arXiv category taxonomy: groups and the categories they contain"""
        try:
            return await fetch_category_taxonomy(context)
        except ArxivError as e:
            logger.warning(f"Taxonomy fetch failed: {e}")
            raise ToolError(str(e)) from e

    @mcp.tool()
    async def arxiv_download_pdf(
        arxiv_id: str = Field(description="arXiv identifier such as '2310.12345' or 'hep-th/9901001v1'"),
        object_name: Optional[str] = Field(
            default=None, description="Object name in the articles bucket, defaults to '<id>.pdf'",
        ),
    ) -> Dict[str, Any]:
        """Download the PDF of an arXiv paper into object storage"""
        try:
            result = await download_pdf(context, arxiv_id, object_name)
        except (ValueError, StorageError) as e:
            logger.warning(f"PDF download failed for {arxiv_id!r}: {e}")
            raise ToolError(str(e)) from e
        return result.to_dict()

    return mcp


def list_tool_names(mcp: FastMCP) -> List[str]:
    """Names of the tools registered on a server."""
    return [tool.name for tool in mcp._tool_manager.list_tools()]
