# tests/conftest.py
"""
Pytest configuration and fixtures for testing
"""
from typing import Callable, Optional

import httpx
import pytest

from opus_config import HTTPClientSettings, S3Settings
from opus_http import RateLimiter, create_http_client
from opus_main import ToolContext

ARXIV_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:opensearch="http://a9.com/-/spec/opensearch/1.1/"
      xmlns:arxiv="http://arxiv.org/schemas/atom">
  <link href="http://arxiv.org/api/query?search_query%3Dcat%3Acs.AI&amp;id_list%3D&amp;start%3D0&amp;max_results%3D2" rel="self" type="application/atom+xml"/>
  <title type="html">ArXiv Query: search_query=cat:cs.AI&amp;id_list=&amp;start=0&amp;max_results=2</title>
  <id>http://arxiv.org/api/cHxbiOdZaP56ODnBPIenZhzg5f8</id>
  <updated>2024-10-18T00:00:00-04:00</updated>
  <opensearch:totalResults>98765</opensearch:totalResults>
  <opensearch:startIndex>0</opensearch:startIndex>
  <opensearch:itemsPerPage>2</opensearch:itemsPerPage>
  <entry>
    <id>http://arxiv.org/abs/2410.12345v1</id>
    <updated>2024-10-17T17:59:59Z</updated>
    <published>2024-10-17T17:59:59Z</published>
    <title>Planning with
      Large Language Models</title>
    <summary>  We study planning.
Results are promising.  </summary>
    <author><name>Ada Lovelace</name></author>
    <author><name>Alan Turing</name></author>
    <link href="http://arxiv.org/abs/2410.12345v1" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/2410.12345v1" rel="related" type="application/pdf"/>
    <arxiv:primary_category xmlns:arxiv="http://arxiv.org/schemas/atom" term="cs.AI" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.AI" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/hep-th/9901001v2</id>
    <updated>1999-01-02T00:00:00Z</updated>
    <published>1999-01-01T00:00:00Z</published>
    <title>Strings</title>
    <summary>Old style identifier.</summary>
    <author><name>Grace Hopper</name></author>
    <link href="http://arxiv.org/abs/hep-th/9901001v2" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/hep-th/9901001v2" rel="related" type="application/pdf"/>
    <arxiv:primary_category xmlns:arxiv="http://arxiv.org/schemas/atom" term="hep-th" scheme="http://arxiv.org/schemas/atom"/>
    <category term="hep-th" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
</feed>
"""

ARXIV_ERROR_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>ArXiv Query: search_query=&amp;id_list=&amp;start=-1</title>
  <id>http://arxiv.org/api/errors</id>
  <updated>2024-10-18T00:00:00-04:00</updated>
  <entry>
    <id>http://arxiv.org/api/errors#start_must_be_non-negative</id>
    <title>Error</title>
    <summary>start must be non-negative</summary>
    <updated>2024-10-18T00:00:00-04:00</updated>
    <link href="http://arxiv.org/api/errors#start_must_be_non-negative" rel="alternate" type="text/html"/>
    <author><name>arXiv api core</name></author>
  </entry>
</feed>
"""

TAXONOMY_HTML = """<!DOCTYPE html>
<html><body>
<div id="category_taxonomy_list" class="large-data-list">
  <h2 class="accordion-head">Computer Science</h2>
  <div class="accordion-body">
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>cs.AI <span>(Artificial Intelligence)</span></h4></div>
      <div class="column"><p>Covers all areas of AI except Vision, Robotics, Machine Learning.</p></div>
    </div>
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>cs.LG <span>(Machine Learning)</span></h4></div>
      <div class="column"><p>Papers on all aspects of machine learning research.</p></div>
    </div>
  </div>
  <h2 class="accordion-head">Physics</h2>
  <div class="accordion-body">
    <h3>Astrophysics (astro-ph)</h3>
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>astro-ph.GA <span>(Astrophysics of Galaxies)</span></h4></div>
      <div class="column"><p>Phenomena pertaining to galaxies.</p></div>
    </div>
    <h3>General Relativity and Quantum Cosmology (gr-qc)</h3>
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>gr-qc <span>(General Relativity and Quantum Cosmology)</span></h4></div>
      <div class="column"><p>Gravitational physics.</p></div>
    </div>
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>physics.optics <span>(Optics)</span></h4></div>
      <div class="column"><p>Adaptive optics, lasers.</p></div>
    </div>
  </div>
  <h2 class="accordion-head">Quantitative Biology</h2>
  <div class="accordion-body">
    <div class="columns divided">
      <div class="column is-one-fifth"><h4>q-bio.BM <span>(Biomolecules)</span></h4></div>
      <div class="column"><p>DNA, RNA, proteins, lipids.</p></div>
    </div>
  </div>
</div>
</body></html>
"""

Handler = Callable[[httpx.Request], httpx.Response]

SETTINGS_ENVIRONMENT = (
    "OPUS_MCP_HTTP_MAX_IDLE_CONNECTIONS",
    "OPUS_MCP_HTTP_IDLE_CONNECTION_TIMEOUT",
    "OPUS_MCP_HTTP_TLS_HANDSHAKE_TIMEOUT",
    "OPUS_MCP_HTTP_CLIENT_TIMEOUT",
    "OPUS_MCP_INSECURE_SKIP_VERIFY",
    "SSL_CERT_FILE",
    "REQUESTS_CA_BUNDLE",
    "CURL_CA_BUNDLE",
    "HTTP_PROXY",
    "http_proxy",
    "HTTPS_PROXY",
    "https_proxy",
    "NO_PROXY",
    "no_proxy",
    "OPUS_MCP_S3_ENDPOINT",
    "OPUS_MCP_S3_ACCESS_KEY",
    "OPUS_MCP_S3_SECRET_KEY",
    "OPUS_MCP_S3_USE_SSL",
    "OPUS_MCP_S3_INSECURE_SKIP_VERIFY",
    "OPUS_MCP_S3_REGION",
    "OPUS_MCP_S3_BUCKET",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of settings."""
    for name in SETTINGS_ENVIRONMENT:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def arxiv_feed() -> str:
    return ARXIV_FEED


@pytest.fixture
def arxiv_error_feed() -> str:
    return ARXIV_ERROR_FEED


@pytest.fixture
def taxonomy_html() -> str:
    return TAXONOMY_HTML


@pytest.fixture
def s3_settings() -> S3Settings:
    return S3Settings(endpoint="localhost:9000", access_key="minio", secret_key="minio123", use_ssl=False)


@pytest.fixture
def make_context() -> Callable[..., ToolContext]:
    """
    Build a ToolContext whose HTTP traffic goes to ``handler``.
    Requests are recorded in ``context.requests``.
    """

    def factory(handler: Handler, s3_settings: Optional[S3Settings] = None,
                s3_client=None) -> ToolContext:
        requests = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = create_http_client(HTTPClientSettings(), transport=httpx.MockTransport(recording_handler))
        context = ToolContext(
            http_client=client,
            rate_limiter=RateLimiter(interval=0),
            s3_settings=s3_settings or S3Settings(),
            s3_client_factory=lambda settings: s3_client,
        )
        context.requests = requests
        return context

    return factory

