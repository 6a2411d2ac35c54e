"""Persistent HTTPS connection with method override and redirect handling."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path
from urllib.parse import urljoin, urlsplit

import httpx

from apps_mail_migration.utils.logging import redact_headers

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"
UNAVAILABLE_MARKER = "unavailable.html"

# Some firewalls only let these verbs through; anything else is tunnelled.
_DIRECT_METHODS = frozenset({"GET", "POST"})
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})


class TransportError(RuntimeError):
    """Raised when a request cannot be delivered or redirects misbehave."""


class HttpResponseError(RuntimeError):
    """Raised for non-2xx, non-redirect responses; keeps the response."""

    def __init__(self, response: httpx.Response) -> None:
        """Initialize the error.

        Args:
            response: The offending HTTP response.
        """
        self.response = response
        super().__init__(f"HTTP {response.status_code} {response.reason_phrase}")

    @property
    def status_code(self) -> int:
        """Return the HTTP status code of the response."""
        return self.response.status_code


class Transport:
    """Single persistent HTTP(S) connection reused across calls.

    The underlying `httpx.Client` is owned exclusively by this object and is
    replaced when the server tears the keep-alive connection down.
    """

    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str,
        max_redirects: int = 10,
        timeout_seconds: float = 120.0,
        verify_tls: bool = True,
        ca_file: Path | None = None,
        debug: bool = False,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the transport and open the connection.

        Args:
            base_url: URL of the host the connection is kept open to.
            user_agent: User-Agent header sent on every request.
            max_redirects: Maximum redirect hops followed per request.
            timeout_seconds: Network timeout for a single request.
            verify_tls: Whether to verify server certificates.
            ca_file: Optional PEM bundle of trust roots.
            debug: Whether to dump request/response traffic at DEBUG level.
            http_transport: Optional httpx transport (tests inject a mock).
        """
        self._base_url = base_url
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self.authorization: str | None = None
        self._timeout = timeout_seconds
        self._verify: ssl.SSLContext | bool = (
            ssl.create_default_context(cafile=str(ca_file)) if ca_file is not None else verify_tls
        )
        self._debug = debug
        self._http_transport = http_transport
        self._client: httpx.Client | None = None
        self.connect()

    def connect(self) -> None:
        """Open (or reopen) the underlying connection."""
        if self._client is not None:
            self._client.close()
        self._client = httpx.Client(
            timeout=self._timeout,
            verify=self._verify,
            follow_redirects=False,
            transport=self._http_transport,
            headers={"Connection": "keep-alive"},
        )
        logger.debug("Opened connection (base_url=%s)", self._base_url)

    def close(self) -> None:
        """Close the underlying connection."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(
        self,
        method: str,
        url: str,
        body: bytes | str | None = None,
        content_type: str | None = DEFAULT_CONTENT_TYPE,
    ) -> httpx.Response:
        """Perform a request on the persistent connection, following redirects.

        Args:
            method: HTTP verb such as "POST" or "DELETE".
            url: Absolute URL to request.
            body: Optional request body.
            content_type: MIME type of the body.

        Returns:
            The final 2xx response.

        Raises:
            TransportError: On redirect loops, the unavailable marker page, or
                when the connection cannot be re-established.
            HttpResponseError: For any other non-2xx response.
        """
        method = method.upper()
        payload = body.encode("utf-8") if isinstance(body, str) else body
        reconnected = False

        for _ in range(self.max_redirects + 1):
            request = self._build_request(method, url, payload, content_type)
            try:
                response = self._require().send(request)
            except (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError) as exc:
                if reconnected:
                    raise TransportError(f"Connection lost twice sending to {url}: {exc!r}") from exc
                # Persistent connection torn down by the server.
                logger.info("Connection dropped; reconnecting (url=%s, error=%r)", url, exc)
                reconnected = True
                self.connect()
                try:
                    response = self._require().send(request)
                except httpx.TransportError as retry_exc:
                    raise TransportError(
                        f"Reconnect failed sending to {url}: {retry_exc!r}",
                    ) from retry_exc
            except httpx.TransportError as exc:
                raise TransportError(f"Request to {url} failed: {exc!r}") from exc

            if self._debug:
                _dump_exchange(request, response)

            if response.is_success:
                return response
            if response.status_code not in _REDIRECT_CODES:
                raise HttpResponseError(response)

            location = response.headers.get("location")
            if not location:
                raise HttpResponseError(response)
            url = urljoin(url, location)
            if UNAVAILABLE_MARKER in urlsplit(url).path:
                raise TransportError("Server unavailable: try again later")
            logger.debug("Following redirect to %s", url)

        raise TransportError("Too many HTTP redirects")

    def _build_request(
        self,
        method: str,
        url: str,
        payload: bytes | None,
        content_type: str | None,
    ) -> httpx.Request:
        """Build a request, tunnelling non-GET/POST verbs through POST."""
        wire_method = method if method in _DIRECT_METHODS else "POST"

        headers: dict[str, str] = {"User-Agent": self.user_agent}
        if self.authorization:
            headers["Authorization"] = self.authorization
        if payload is not None:
            if content_type:
                headers["Content-Type"] = content_type
            headers["Content-Length"] = str(len(payload))
        if wire_method != method:
            headers["X-HTTP-Method-Override"] = method
            if payload is None:
                headers["Content-Length"] = "0"

        return self._require().build_request(wire_method, url, headers=headers, content=payload)

    def _require(self) -> httpx.Client:
        """Return the underlying client or raise if closed."""
        if self._client is None:
            raise TransportError("Connection is closed")
        return self._client


def _dump_exchange(request: httpx.Request, response: httpx.Response) -> None:
    """Log a request/response pair for protocol debugging."""
    headers = "\n".join(f"{k}: {v}" for k, v in redact_headers(request.headers.items()))
    logger.debug(
        "%s %s\n%s\n-> %s %s\n%s",
        request.method,
        request.url,
        headers,
        response.status_code,
        response.reason_phrase,
        response.text,
    )
