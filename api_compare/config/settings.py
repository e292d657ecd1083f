"""
Configuration loader for the API comparison harness.

Builds one immutable HarnessConfig from environment variables (CI) and
command-line overrides, parses node addresses in the formats the Filecoin
tooling uses, and installs log redaction for node API tokens.
"""

import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""

    pass


# Defaults match the docker-compose layout used for the API tests:
# Lotus (reference) on 1234, Forest (candidate) on 2345.
DEFAULT_REFERENCE_ADDRESS = "/ip4/127.0.0.1/tcp/1234/http"
DEFAULT_CANDIDATE_ADDRESS = "/ip4/127.0.0.1/tcp/2345/http"
DEFAULT_RPC_PATH = "/rpc/v0"
DEFAULT_CATALOG_PATH = "config/catalog.yaml"
DEFAULT_STATUS_METHOD = "Filecoin.ChainHead"

SUPPORTED_PROTOCOLS = ("http", "https")
OUTPUT_FORMATS = ("text", "json")

_HOST_PROTOCOLS = ("ip4", "ip6", "dns", "dns4", "dns6")
_SCHEMES = ("http://", "https://", "ws://", "wss://")


class RunIgnored(Enum):
    """Behaviour for catalog entries marked as ignored."""

    DEFAULT = "default"
    IGNORED_ONLY = "ignored-only"
    ALL = "all"


@dataclass(frozen=True)
class NodeEndpoint:
    """Resolved RPC endpoint for one node."""

    url: str
    token: Optional[str] = None
    protocol: str = "http"

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable view with the token left out."""
        return {"url": self.url, "protocol": self.protocol, "has_token": bool(self.token)}


def _multiaddr_to_url(multiaddr: str) -> Tuple[str, str]:
    """
    Convert a multiaddr such as /ip4/127.0.0.1/tcp/1234/http to a URL.

    Returns:
        Tuple of (url, protocol)

    Raises:
        ConfigurationError: If the multiaddr is not host/tcp/protocol shaped
    """
    parts = [part for part in multiaddr.strip("/").split("/") if part]
    if len(parts) < 5:
        raise ConfigurationError(f"Unsupported multiaddr: {multiaddr}")

    host_proto, host, tcp, port, protocol = parts[:5]
    if host_proto not in _HOST_PROTOCOLS or tcp != "tcp":
        raise ConfigurationError(f"Unsupported multiaddr: {multiaddr}")
    if not port.isdigit():
        raise ConfigurationError(f"Invalid port in multiaddr: {multiaddr}")

    if host_proto == "ip6":
        host = f"[{host}]"
    return f"{protocol}://{host}:{port}{DEFAULT_RPC_PATH}", protocol


def parse_api_info(value: str, token: Optional[str] = None) -> NodeEndpoint:
    """
    Parse a node address.

    Accepted forms:
        http://127.0.0.1:1234/rpc/v0
        /ip4/127.0.0.1/tcp/1234/http
        <token>:/ip4/127.0.0.1/tcp/1234/http   (Lotus API info)

    An explicit ``token`` argument wins over a token embedded in the value.

    Raises:
        ConfigurationError: If the address cannot be parsed
    """
    raw = (value or "").strip()
    if not raw:
        raise ConfigurationError("Node address is empty")

    if not raw.startswith("/") and not raw.startswith(_SCHEMES) and ":/" in raw:
        embedded_token, raw = raw.split(":", 1)
        token = token or embedded_token or None

    if raw.startswith("/"):
        url, protocol = _multiaddr_to_url(raw)
    else:
        parsed = urlparse(raw)
        if not parsed.scheme or not parsed.netloc:
            raise ConfigurationError(f"Invalid node address: {value}")
        url, protocol = raw, parsed.scheme

    return NodeEndpoint(url=url, token=token or None, protocol=protocol)


def derive_protocol(reference: NodeEndpoint, candidate: NodeEndpoint) -> str:
    """
    Return the protocol shared by both endpoints.

    Raises:
        ConfigurationError: If the protocols differ or are not request/response HTTP
    """
    if reference.protocol != candidate.protocol:
        raise ConfigurationError(
            f"communication protocols mismatch: {candidate.protocol} (candidate) "
            f"is different from {reference.protocol} (reference)"
        )
    if reference.protocol not in SUPPORTED_PROTOCOLS:
        raise ConfigurationError(
            f"Unsupported protocol '{reference.protocol}'. "
            f"Expected one of: {', '.join(SUPPORTED_PROTOCOLS)}"
        )
    return reference.protocol


def _env_flag(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _env_number(environ: Mapping[str, str], name: str, default, cast=float):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from e


@dataclass(frozen=True)
class HarnessConfig:
    """
    Immutable run configuration passed explicitly to every component.

    Timeouts are in seconds.
    """

    reference: NodeEndpoint
    candidate: NodeEndpoint
    catalog_path: str = DEFAULT_CATALOG_PATH

    run_timeout: float = 1800.0
    request_timeout: float = 60.0
    readiness_timeout: float = 600.0
    poll_interval: float = 5.0
    max_retries: int = 2
    retry_backoff: float = 0.5
    max_concurrent_requests: int = 8

    strict: bool = False
    fail_fast: bool = False
    output_format: str = "text"
    report_path: Optional[str] = None

    filter: str = ""
    filter_file: Optional[str] = None
    run_ignored: RunIgnored = RunIgnored.DEFAULT

    status_method: str = DEFAULT_STATUS_METHOD
    snapshot_path: Optional[str] = None

    tipset_lag: int = 20
    n_tipsets: int = 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HarnessConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigurationError: If an address or number cannot be parsed
        """
        env = os.environ if environ is None else environ

        reference = parse_api_info(
            env.get("REFERENCE_API_INFO", DEFAULT_REFERENCE_ADDRESS),
            token=env.get("REFERENCE_API_TOKEN"),
        )
        candidate = parse_api_info(
            env.get("CANDIDATE_API_INFO", DEFAULT_CANDIDATE_ADDRESS),
            token=env.get("CANDIDATE_API_TOKEN"),
        )

        run_ignored_raw = env.get("API_COMPARE_RUN_IGNORED", RunIgnored.DEFAULT.value)
        try:
            run_ignored = RunIgnored(run_ignored_raw)
        except ValueError as e:
            raise ConfigurationError(
                f"API_COMPARE_RUN_IGNORED must be one of "
                f"{[mode.value for mode in RunIgnored]}, got '{run_ignored_raw}'"
            ) from e

        return cls(
            reference=reference,
            candidate=candidate,
            catalog_path=env.get("API_COMPARE_CATALOG", DEFAULT_CATALOG_PATH),
            run_timeout=_env_number(env, "API_COMPARE_RUN_TIMEOUT", 1800.0),
            request_timeout=_env_number(env, "API_COMPARE_REQUEST_TIMEOUT", 60.0),
            readiness_timeout=_env_number(env, "API_COMPARE_READINESS_TIMEOUT", 600.0),
            poll_interval=_env_number(env, "API_COMPARE_POLL_INTERVAL", 5.0),
            max_retries=_env_number(env, "API_COMPARE_MAX_RETRIES", 2, cast=int),
            retry_backoff=_env_number(env, "API_COMPARE_RETRY_BACKOFF", 0.5),
            max_concurrent_requests=_env_number(
                env, "API_COMPARE_MAX_CONCURRENT_REQUESTS", 8, cast=int
            ),
            strict=_env_flag(env, "API_COMPARE_STRICT"),
            fail_fast=_env_flag(env, "API_COMPARE_FAIL_FAST"),
            output_format=env.get("API_COMPARE_OUTPUT_FORMAT", "text"),
            report_path=env.get("API_COMPARE_REPORT_PATH") or None,
            filter=env.get("API_COMPARE_FILTER", ""),
            filter_file=env.get("API_COMPARE_FILTER_FILE") or None,
            run_ignored=run_ignored,
            status_method=env.get("API_COMPARE_STATUS_METHOD", DEFAULT_STATUS_METHOD),
            snapshot_path=env.get("API_COMPARE_SNAPSHOT_PATH") or None,
            tipset_lag=_env_number(env, "API_COMPARE_TIPSET_LAG", 20, cast=int),
            n_tipsets=_env_number(env, "API_COMPARE_N_TIPSETS", 1, cast=int),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a serialisable dictionary (tokens excluded)."""
        data = asdict(self)
        data["reference"] = self.reference.to_dict()
        data["candidate"] = self.candidate.to_dict()
        data["run_ignored"] = self.run_ignored.value
        return data

    def validate(self) -> List[str]:
        """Validate configuration completeness. Returns list of errors."""
        errors: List[str] = []

        try:
            derive_protocol(self.reference, self.candidate)
        except ConfigurationError as e:
            errors.append(str(e))

        for name in ("run_timeout", "request_timeout", "readiness_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0")
        if self.retry_backoff < 0:
            errors.append("retry_backoff must be >= 0")
        if self.max_retries < 0:
            errors.append("max_retries must be >= 0")
        if self.max_concurrent_requests < 1:
            errors.append("max_concurrent_requests must be >= 1")
        if self.tipset_lag < 0:
            errors.append("tipset_lag must be >= 0")
        if self.n_tipsets < 1:
            errors.append("n_tipsets must be >= 1")

        if self.output_format not in OUTPUT_FORMATS:
            errors.append(
                f"output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
                f"got '{self.output_format}'"
            )
        if not self.status_method:
            errors.append("status_method is required")

        if not Path(self.catalog_path).is_file():
            errors.append(f"catalog_path does not exist: {self.catalog_path}")
        if self.filter_file and not Path(self.filter_file).is_file():
            errors.append(f"filter_file does not exist: {self.filter_file}")

        if self.snapshot_path:
            snapshot = Path(self.snapshot_path)
            if not snapshot.exists():
                errors.append(f"snapshot_path does not exist: {self.snapshot_path}")
            elif snapshot.is_dir() and not any(snapshot.iterdir()):
                errors.append(f"snapshot_path is empty: {self.snapshot_path}")

        return errors


class TokenRedactionFilter(logging.Filter):
    """
    Logging filter that redacts node API tokens from log records.
    Replaces token substrings with ***REDACTED*** to prevent accidental leakage.
    """

    def __init__(self, tokens: Optional[List[str]] = None):
        """
        Initialize filter with tokens to redact.

        Args:
            tokens: Token values to mask (empty and very short values are ignored)
        """
        super().__init__()
        self.redacted_values: set[str] = {
            token for token in (tokens or []) if token and len(token) > 3
        }

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter and redact log record."""
        if not self.redacted_values:
            return True
        record.msg = self._redact_string(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact_string(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(self._redact_string(str(arg)) for arg in record.args)
        return True

    def _redact_string(self, text: str) -> str:
        """Redact all token values from string."""
        for secret in self.redacted_values:
            if secret in text:
                text = text.replace(secret, "***REDACTED***")
        return text


def setup_logging_redaction(config: HarnessConfig, handlers: List[logging.Handler]) -> TokenRedactionFilter:
    """
    Attach a TokenRedactionFilter for both node tokens to the given handlers.

    Args:
        config: Run configuration holding the node tokens
        handlers: Handlers that emit harness logs

    Returns:
        The installed filter
    """
    redaction_filter = TokenRedactionFilter([config.reference.token, config.candidate.token])
    for handler in handlers:
        handler.addFilter(redaction_filter)
    logger.debug(
        "Token redaction installed on %d handler(s) for %d token(s)",
        len(handlers),
        len(redaction_filter.redacted_values),
    )
    return redaction_filter
