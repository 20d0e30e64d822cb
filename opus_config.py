"""
Environment-driven configuration for the HTTP client and object storage.
"""
import logging
import re
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from opus_metadata import S3_ARTICLES_BUCKET

logger = logging.getLogger(__name__)

DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)?$")


class ConfigurationError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def load_environment(path: Optional[str] = None) -> bool:
    """
    Load a .env file into the process environment if one is present.

    Values already set in the environment take precedence. Settings classes
    read .env on their own; this makes values such as OPUS_MCP_LOG_LEVEL
    visible to code that reads os.environ directly.

    Returns:
        True if a .env file was loaded, False otherwise
    """
    loaded = load_dotenv(dotenv_path=path)
    if loaded:
        logger.info("Loaded configuration from .env file")
    else:
        logger.debug("No .env file loaded, using system environment variables only")
    return loaded


def parse_duration(value: str) -> float:
    """
    Parse a duration such as "30s", "500ms", "2m" or "15" into seconds.
    """
    match = DURATION_PATTERN.match(value.strip().lower())
    if not match:
        raise ConfigurationError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * DURATION_UNITS[unit or "s"]


class HTTPClientSettings(BaseSettings):
    """Settings for the outbound HTTP client."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_ignore_empty=True,
        # Aliases are exact so HTTP_PROXY is preferred over http_proxy
        case_sensitive=True,
        populate_by_name=True,
    )

    max_idle_connections: int = Field(default=10, validation_alias="OPUS_MCP_HTTP_MAX_IDLE_CONNECTIONS")
    idle_connection_timeout: float = Field(default=30.0, validation_alias="OPUS_MCP_HTTP_IDLE_CONNECTION_TIMEOUT")
    tls_handshake_timeout: float = Field(default=10.0, validation_alias="OPUS_MCP_HTTP_TLS_HANDSHAKE_TIMEOUT")
    client_timeout: float = Field(default=30.0, validation_alias="OPUS_MCP_HTTP_CLIENT_TIMEOUT")
    ssl_cert_file: str = Field(default="", validation_alias="SSL_CERT_FILE")
    requests_ca_bundle: str = Field(default="", validation_alias="REQUESTS_CA_BUNDLE")
    curl_ca_bundle: str = Field(default="", validation_alias="CURL_CA_BUNDLE")
    http_proxy: str = Field(default="", validation_alias=AliasChoices("HTTP_PROXY", "http_proxy"))
    https_proxy: str = Field(default="", validation_alias=AliasChoices("HTTPS_PROXY", "https_proxy"))
    no_proxy: str = Field(default="", validation_alias=AliasChoices("NO_PROXY", "no_proxy"))
    # Disabling verification is insecure, use only in development
    insecure_skip_verify: bool = Field(default=False, validation_alias="OPUS_MCP_INSECURE_SKIP_VERIFY")

    @field_validator("idle_connection_timeout", "tls_handshake_timeout", "client_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @property
    def ca_bundles(self) -> List[Tuple[str, str]]:
        """Configured CA bundle paths as (variable name, path), in lookup order."""
        candidates = [
            ("SSL_CERT_FILE", self.ssl_cert_file),
            ("REQUESTS_CA_BUNDLE", self.requests_ca_bundle),
            ("CURL_CA_BUNDLE", self.curl_ca_bundle),
        ]
        return [(name, path) for name, path in candidates if path]


class S3Settings(BaseSettings):
    """Connection settings for the S3-compatible article store."""

    model_config = SettingsConfigDict(
        env_prefix="OPUS_MCP_S3_",
        env_file=".env",
        extra="ignore",
        env_ignore_empty=True,
    )

    endpoint: str = ""
    access_key: str = Field(default="", repr=False)
    secret_key: str = Field(default="", repr=False)
    use_ssl: bool = True
    insecure_skip_verify: bool = False
    region: str = "us-east-1"
    bucket: str = S3_ARTICLES_BUCKET

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.access_key and self.secret_key)

    @property
    def endpoint_url(self) -> str:
        if "://" in self.endpoint:
            return self.endpoint
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint}"
