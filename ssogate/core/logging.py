"""Protocol logging for SSO flows.

Records the HTTP exchanges an SSO provider makes (the IdP metadata fetch)
and redacts SAML messages and credentials before they reach a log sink.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (metadata fetched, responses validated)
- DEBUG: Log HTTP details (headers, status codes, timing)
- TRACE: Log full bodies including SAML messages (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Package and protocol loggers
package_logger = logging.getLogger("ssogate")
logger = logging.getLogger("ssogate.protocol")

# Truncate logged bodies beyond this many characters
MAX_BODY_LOG_CHARS = 2000


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # SAML bindings (query strings and form bodies)
    (re.compile(r"(SAMLResponse=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(SAMLRequest=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(RelayState=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"([?&]Signature=)[^&\s]+"), r"\1[REDACTED]"),
    # Private key material
    (
        re.compile(
            r"-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----",
            re.DOTALL,
        ),
        r"-----BEGIN \1PRIVATE KEY-----[REDACTED]-----END \1PRIVATE KEY-----",
    ),
    # HTTP headers (with or without "Authorization:" prefix for header dict values)
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # Cookies
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    # JSON fields
    (re.compile(r'"(password)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
    (re.compile(r'"(secret_key)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
]

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
    redacted = {}
    for name, value in headers.items():
        if name.lower() in SENSITIVE_HEADERS:
            redacted[name] = "[REDACTED]"
        else:
            redacted[name] = redact_sensitive(value)
    return redacted


@dataclass
class HTTPExchange:
    """Represents a single HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    redirects: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If True, include raw sensitive data.
                               If False, redact sensitive information.

        Returns:
            Dictionary representation of the exchange.
        """
        def process(value: str | None) -> str | None:
            if value is None:
                return None
            return value if include_sensitive else redact_sensitive(value)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": dict(self.request_headers)
            if include_sensitive
            else _redact_headers(self.request_headers),
            "response_status": self.response_status,
            "response_headers": dict(self.response_headers)
            if include_sensitive
            else _redact_headers(self.response_headers),
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "redirects": [
                {"url": process(r["url"]), "status": r.get("status")} for r in self.redirects
            ],
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.

        Returns:
            Formatted log string.
        """
        data = self.to_dict(include_sensitive)
        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {data['url']} -> {status}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")

        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in data["request_headers"].items():
                lines.append(f"    {name}: {value}")

            if data["response_headers"]:
                lines.append("  Response Headers:")
                for name, value in data["response_headers"].items():
                    lines.append(f"    {name}: {value}")

            for redirect in data["redirects"]:
                lines.append(f"  Redirect: {redirect.get('status', '???')} {redirect['url']}")

        if level <= LogLevel.TRACE and data["response_body"]:
            body = data["response_body"]
            lines.append("  Response Body:")
            lines.append(f"    {body[:MAX_BODY_LOG_CHARS]}{'...' if len(body) > MAX_BODY_LOG_CHARS else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects protocol exchanges for one flow."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        self.exchanges.append(exchange)

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Configurable protocol logger for SSO flows.

    Keeps the log level settings and collects the HTTP exchanges of the
    flow currently in progress.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
        """
        self._level = level
        self._trace_enabled = trace_enabled
        self._current_log: ProtocolLog | None = None

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        return self._trace_enabled

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start logging a new flow.

        Args:
            flow_id: Unique identifier for the flow.
            flow_type: Type of flow (e.g., "saml_metadata_fetch").

        Returns:
            ProtocolLog for the flow.
        """
        self._current_log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        logger.debug(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return self._current_log

    def end_flow(self) -> ProtocolLog | None:
        """End the current flow and return the log."""
        if self._current_log is None:
            return None
        log = self._current_log
        log.complete()
        self._current_log = None
        logger.debug(
            f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
            f"({len(log.exchanges)} exchanges)"
        )
        return log

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Log an HTTP exchange.

        Args:
            exchange: The HTTP exchange to log.
        """
        if self._current_log:
            self._current_log.add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE
        log_text = exchange.format_log(effective, include_sensitive)

        if effective <= LogLevel.DEBUG:
            logger.debug(log_text)
        elif effective <= LogLevel.INFO:
            logger.info(log_text)

        if exchange.error:
            logger.error(
                f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}"
            )


class LoggingClient(httpx.Client):
    """HTTPX client that reports every exchange to a ProtocolLogger."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        max_redirects: int = 10,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Creates default if not provided.
            max_redirects: Redirects followed before giving up.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or ProtocolLogger()
        self._max_redirects = max_redirects

        # Redirects are followed manually so each hop can be recorded
        kwargs["follow_redirects"] = False

        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request with logging, following redirects."""
        start_time = time.perf_counter()
        redirects: list[dict[str, Any]] = []

        request = self.build_request(method, url, **kwargs)
        exchange = HTTPExchange(
            id=f"http_{id(request):08x}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            redirects=redirects,
        )

        try:
            response = self.send(request)
            while response.is_redirect and len(redirects) < self._max_redirects:
                location = response.headers.get("location", "")
                if not location:
                    break
                redirects.append({"url": location, "status": response.status_code})
                # Relative locations resolve against the current request URL
                request = self.build_request("GET", request.url.join(location))
                response = self.send(request)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e)
            self._protocol_logger.log_exchange(exchange)
            raise

        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = response.text
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        self._protocol_logger.log_exchange(exchange)

        return response


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def parse_log_level(level: LogLevel | str) -> LogLevel:
    """Parse a level name such as ``"debug"``; unknown names map to INFO."""
    if isinstance(level, LogLevel):
        return level
    return LogLevel.__members__.get(level.upper(), LogLevel.INFO)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure logging for the ssogate package.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes SAML messages).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    level = parse_log_level(level)

    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        package_logger.warning(
            "TRACE logging enabled - SAML messages and IdP metadata will be logged!"
        )

    return protocol_logger
