"""ClientLogin-style credential exchange."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlencode

from apps_mail_migration.transport.connection import (
    DEFAULT_CONTENT_TYPE,
    HttpResponseError,
    Transport,
)

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "Auth"
AUTH_HEADER_SCHEME = "GoogleLogin"


class AuthError(RuntimeError):
    """Raised when the login exchange does not yield a usable token."""


@dataclass(frozen=True)
class LoginCredentials:
    """Credentials posted to the login endpoint."""

    email: str
    password: str = field(repr=False)
    account_type: str = "HOSTED"
    service: str = "apps"
    source: str | None = None

    def to_form(self) -> dict[str, str | None]:
        """Return the form fields expected by the login endpoint."""
        return {
            "Email": self.email,
            "Passwd": self.password,
            "accountType": self.account_type,
            "service": self.service,
            "source": self.source,
        }


@dataclass(frozen=True)
class AuthSession:
    """Token obtained for one migration run; never persisted."""

    token: str = field(repr=False)
    email: str

    @property
    def authorization(self) -> str:
        """Return the Authorization header value for this session."""
        return f"{AUTH_HEADER_SCHEME} auth={self.token}"


def encode_form(params: dict[str, str | None]) -> str:
    """Encode parameters as x-www-form-urlencoded, skipping absent values.

    Args:
        params: Form fields; fields whose value is None are omitted.

    Returns:
        Encoded body such as `q=ruby+doc&count=15`.
    """
    return urlencode({key: value for key, value in params.items() if value is not None})


def split_pairs(body: str) -> dict[str, str]:
    """Parse `NAME=VALUE` lines into a mapping.

    Args:
        body: Response body such as "SID=1\\nLSID=2\\nAuth=3".

    Returns:
        Mapping of names to values; lines without `=` map to an empty string.
    """
    results: dict[str, str] = {}
    for line in body.splitlines():
        if not line.strip():
            continue
        key, _, value = line.partition("=")
        results[key] = value
    return results


class ClientLogin:
    """Exchange account credentials for a bearer token."""

    def __init__(self, *, transport: Transport, login_url: str) -> None:
        """Initialize the authenticator.

        Args:
            transport: Transport used for the (unauthenticated) login call.
            login_url: Absolute URL of the login endpoint.
        """
        self._transport = transport
        self._login_url = login_url

    def login(self, credentials: LoginCredentials) -> AuthSession:
        """Log in and install the resulting token into the transport.

        Args:
            credentials: Account credentials.

        Returns:
            AuthSession holding the token.

        Raises:
            AuthError: If the server rejects the credentials or returns no token.
        """
        body = encode_form(credentials.to_form())
        try:
            resp = self._transport.send("POST", self._login_url, body, DEFAULT_CONTENT_TYPE)
        except HttpResponseError as exc:
            detail = split_pairs(exc.response.text).get("Error", exc.response.text.strip())
            raise AuthError(f"Login failed for {credentials.email}: {exc} ({detail})") from exc

        tokens = split_pairs(resp.text)
        token = tokens.get(AUTH_TOKEN_KEY)
        if not token:
            raise AuthError(
                f"No authorization token in login response for {credentials.email}; "
                "check the account credentials and service name.",
            )

        session = AuthSession(token=token, email=credentials.email)
        self._transport.authorization = session.authorization
        logger.info("Authenticated (email=%s)", credentials.email)
        return session
