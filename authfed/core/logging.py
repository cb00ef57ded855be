"""Protocol logging for federation flows.

Provides HTTP-level logging of every exchange with an identity provider
(discovery, token, userinfo, SAML metadata), with configurable log levels
and sensitive data protection.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (requests initiated, responses received)
- DEBUG: Log HTTP details (headers, status codes, timing)
- TRACE: Log full request/response bodies including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import itertools
import logging
import re
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Module logger
logger = logging.getLogger("authfed.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # OAuth/OIDC
    (re.compile(r"(client_secret=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(code=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(access_token=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(refresh_token=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(id_token=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(code_verifier=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # SAML2 messages
    (re.compile(r"(SAMLRequest=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(SAMLResponse=)[^&\s]+"), r"\1[REDACTED]"),
    # HTTP headers (with or without "Authorization:" prefix for header dict values)
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # Cookies
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    # JSON fields
    (re.compile(r'"(client_secret)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
    (re.compile(r'"(access_token)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
    (re.compile(r'"(refresh_token)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
    (re.compile(r'"(id_token)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
]

# Header names whose values are always redacted, whatever their format
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
            redacted[name] = redact_sensitive(value) if value.startswith(("Bearer ", "Basic ")) else "[REDACTED]"
        else:
            redacted[name] = redact_sensitive(value)
    return redacted


def _decode_body(content: bytes) -> str | None:
    if not content:
        return None
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary content>"


@dataclass
class HTTPExchange:
    """Represents a single HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

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

        def process_headers(headers: dict[str, str]) -> dict[str, str]:
            if include_sensitive:
                return dict(headers)
            return _redact_headers(headers)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": process_headers(self.request_headers),
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_headers": process_headers(self.response_headers),
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
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
        lines = [f"HTTP {self.method} {data['url']} -> {self.response_status or 'ERROR'}"]

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

        if level <= LogLevel.TRACE:
            for label, body in (("Request Body", data["request_body"]), ("Response Body", data["response_body"])):
                if body:
                    lines.append(f"  {label}:")
                    lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects protocol exchanges for a flow."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        """Add an HTTP exchange to the log."""
        self.exchanges.append(exchange)

    def complete(self) -> None:
        """Mark the log as complete."""
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Configurable protocol logger for federation flows.

    Manages log level settings and provides HTTP transports for capturing
    request/response data. The active flow is tracked per task, so
    concurrent callbacks each collect their own exchanges.
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
        self._current_log: ContextVar[ProtocolLog | None] = ContextVar(
            f"authfed_protocol_log_{id(self)}", default=None
        )
        self._exchange_counter = itertools.count(1)

    @property
    def level(self) -> LogLevel:
        """Get current log level."""
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        """Whether TRACE level is enabled."""
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    @property
    def current_flow(self) -> ProtocolLog | None:
        """The flow being recorded in the current context, if any."""
        return self._current_log.get()

    def next_exchange_id(self) -> str:
        """Allocate an identifier for the next HTTP exchange."""
        return f"http_{next(self._exchange_counter):04d}"

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start logging a new flow in the current context.

        Args:
            flow_id: Unique identifier for the flow.
            flow_type: Type of flow (e.g., "oidc_discovery", "oidc_callback").

        Returns:
            ProtocolLog for the flow.
        """
        log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        self._current_log.set(log)
        logger.info(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return log

    def end_flow(self) -> ProtocolLog | None:
        """End the current flow and return the log.

        Returns:
            The completed ProtocolLog, or None if no flow was active.
        """
        log = self._current_log.get()
        if log is None:
            return None
        log.complete()
        logger.info(
            f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
            f"({len(log.exchanges)} exchanges)"
        )
        self._current_log.set(None)
        return log

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Log an HTTP exchange.

        Args:
            exchange: The HTTP exchange to log.
        """
        current = self._current_log.get()
        if current is not None:
            current.add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}")

    def create_transport(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: bool = True,
    ) -> AsyncLoggingTransport:
        """Create an httpx async transport that logs requests/responses.

        Args:
            transport: Transport to wrap. A plain HTTP transport is used if not provided.
            verify: Whether to verify TLS certificates on the default transport.

        Returns:
            AsyncLoggingTransport configured with this logger.
        """
        return AsyncLoggingTransport(self, transport=transport, verify=verify)


class AsyncLoggingTransport(httpx.AsyncBaseTransport):
    """HTTPX async transport that logs all HTTP exchanges."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: bool = True,
    ) -> None:
        """Initialize the logging transport.

        Args:
            protocol_logger: ProtocolLogger to use for logging.
            transport: Inner transport that performs the request.
            verify: Whether to verify TLS certificates on the default transport.
        """
        self._logger = protocol_logger
        self._transport = transport or httpx.AsyncHTTPTransport(verify=verify)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Handle an HTTP request with logging.

        Args:
            request: The outgoing request.

        Returns:
            The response from the server, with its body already read.
        """
        start_time = time.perf_counter()
        exchange = HTTPExchange(
            id=self._logger.next_exchange_id(),
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=_decode_body(request.content),
        )

        try:
            response = await self._transport.handle_async_request(request)
            await response.aread()
        except Exception as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e) or type(e).__name__
            self._logger.log_exchange(exchange)
            raise

        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = _decode_body(response.content)
        self._logger.log_exchange(exchange)
        return response

    async def aclose(self) -> None:
        """Close the underlying transport."""
        await self._transport.aclose()


class AsyncLoggingClient(httpx.AsyncClient):
    """HTTPX async client with protocol logging support."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Uses the global logger if not provided.
            transport: Inner transport to wrap (tests inject ``httpx.MockTransport``).
            verify: Whether to verify TLS certificates.
            **kwargs: Additional arguments passed to httpx.AsyncClient.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        kwargs.setdefault("follow_redirects", False)
        super().__init__(
            transport=self._protocol_logger.create_transport(transport, verify=verify),
            **kwargs,
        )

    @property
    def protocol_logger(self) -> ProtocolLogger:
        """Get the protocol logger."""
        return self._protocol_logger


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance.

    Returns:
        The global ProtocolLogger.
    """
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance.

    Args:
        logger_instance: ProtocolLogger to use globally.
    """
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - sensitive data (tokens, secrets) will be logged!")

    return protocol_logger
