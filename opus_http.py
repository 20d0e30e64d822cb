"""
Outbound HTTP plumbing: a configured httpx client and the arXiv rate limiter.
"""
import asyncio
import logging
import ssl
import time
from typing import Callable, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import httpx

from opus_config import HTTPClientSettings

logger = logging.getLogger(__name__)

# arXiv API terms of use: at most one request every three seconds
ARXIV_REQUEST_INTERVAL = 3.0


def sanitize_proxy_url(proxy_url: str) -> str:
    """
    Mask the credentials of a proxy URL so it can be logged.

    Returns "" for an empty URL and "<invalid-url>" when it cannot be parsed.
    """
    if not proxy_url:
        return ""
    try:
        parts = urlsplit(proxy_url)
        port = parts.port
    except ValueError:
        return "<invalid-url>"

    if parts.username is None and parts.password is None:
        return proxy_url

    netloc = "***:***@" + (parts.hostname or "")
    if port is not None:
        netloc += f":{port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def load_custom_ca_bundle(context: ssl.SSLContext, settings: HTTPClientSettings) -> bool:
    """
    Add the CA bundles named by SSL_CERT_FILE, REQUESTS_CA_BUNDLE and
    CURL_CA_BUNDLE to an SSL context that already trusts the system CAs.

    Returns:
        True if at least one bundle was loaded
    """
    loaded_any = False
    for env_var, path in settings.ca_bundles:
        try:
            context.load_verify_locations(cafile=path)
        except ssl.SSLError as e:
            logger.warning(f"Failed to parse CA certificate from {env_var}={path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load CA certificate file from {env_var}={path}: {e}")
        else:
            logger.info(f"Loaded custom CA certificate from {env_var}={path}")
            loaded_any = True
    return loaded_any


def create_ssl_context(settings: HTTPClientSettings) -> Union[ssl.SSLContext, bool]:
    """Build the TLS configuration, or False when verification is disabled."""
    if settings.insecure_skip_verify:
        logger.warning("SECURITY WARNING: HTTP TLS certificate verification is DISABLED")
        return False

    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    load_custom_ca_bundle(context, settings)
    return context


def create_http_client(settings: Optional[HTTPClientSettings] = None,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create the shared async HTTP client.

    Proxies are taken from HTTP_PROXY / HTTPS_PROXY / NO_PROXY by httpx
    itself; they are only logged here.
    """
    if settings is None:
        settings = HTTPClientSettings()

    if settings.http_proxy:
        logger.info(f"Using HTTP proxy {sanitize_proxy_url(settings.http_proxy)}")
    if settings.https_proxy:
        logger.info(f"Using HTTPS proxy {sanitize_proxy_url(settings.https_proxy)}")

    return httpx.AsyncClient(
        verify=create_ssl_context(settings),
        limits=httpx.Limits(
            max_keepalive_connections=settings.max_idle_connections,
            keepalive_expiry=settings.idle_connection_timeout,
        ),
        timeout=httpx.Timeout(settings.client_timeout, connect=settings.tls_handshake_timeout),
        follow_redirects=True,
        transport=transport,
    )


class RateLimiter:
    """
    Allow one acquisition per ``interval`` seconds, burst of one.

    Callers queue on an asyncio lock, so requests are released in arrival
    order.
    """

    def __init__(self, interval: float = ARXIV_REQUEST_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._next_allowed: Optional[float] = None

    async def wait(self) -> float:
        """Block until a request may be made. Returns the time spent waiting."""
        async with self._lock:
            now = self._clock()
            delay = 0.0
            if self._next_allowed is not None and self._next_allowed > now:
                delay = self._next_allowed - now
                logger.debug(f"Rate limit reached, waiting {delay:.2f}s")
                await asyncio.sleep(delay)
            self._next_allowed = now + delay + self.interval
            return delay
