"""
Credential resolution for sources that require authentication.

API-key sources get their static key from the credential store. OAuth
sources get a bearer token from a client-credentials exchange; tokens are
cached per source until shortly before they expire, and concurrent first use
of a source triggers a single exchange.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import requests

from ..config.secrets import CredentialStore
from ..errors import AuthenticationFailed, FetchError
from .catalog import AuthMode, DEFAULT_API_KEY_HEADER, SourceCatalog, SourceDescriptor
from .transport import build_session

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
TOKEN_REQUEST_TIMEOUT = 10
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# (token_url, client_id, client_secret, timeout) -> (access_token, expires_in_seconds)
TokenExchange = Callable[[str, str, str, float], Tuple[str, int]]


@dataclass
class AuthToken:
    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Credential:
    """Ready-to-send authentication header."""
    header_name: str
    value: str

    def as_headers(self) -> Dict[str, str]:
        return {self.header_name: self.value}


def client_credentials_exchange(token_url: str, client_id: str, client_secret: str,
                                timeout: float, session: Optional[requests.Session] = None) -> Tuple[str, int]:
    """
    Perform an OAuth client-credentials token request.

    Returns:
        Tuple of (access_token, expires_in_seconds)

    Raises:
        requests.RequestException: On transport or HTTP failure
        ValueError: If the response lacks an access token
    """
    session = session or build_session()
    response = session.post(
        token_url,
        data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        },
        timeout=timeout,
    )
    response.raise_for_status()
    body = response.json()

    token = body.get("access_token")
    if not token:
        raise ValueError("token response has no access_token")
    return token, int(body.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))


class AuthProvider:
    """Resolves credentials per source id with a thread-safe token cache."""

    def __init__(
        self,
        catalog: SourceCatalog,
        credentials: Optional[CredentialStore] = None,
        token_exchange: Optional[TokenExchange] = None,
        token_timeout: float = TOKEN_REQUEST_TIMEOUT,
        expiry_margin: timedelta = TOKEN_EXPIRY_MARGIN,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.catalog = catalog
        self.credentials = credentials or CredentialStore()
        self.token_exchange = token_exchange or client_credentials_exchange
        self.token_timeout = token_timeout
        self.expiry_margin = expiry_margin
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._tokens: Dict[str, AuthToken] = {}
        self._source_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, source_id: str) -> threading.Lock:
        with self._locks_guard:
            if source_id not in self._source_locks:
                self._source_locks[source_id] = threading.Lock()
            return self._source_locks[source_id]

    def get_credential(self, source_id: str) -> Optional[Credential]:
        """
        Resolve the credential for a source.

        Returns:
            Credential, or None for sources without authentication

        Raises:
            MissingCredential: If a static key or client secret is absent
            AuthenticationFailed: If the token exchange fails
        """
        descriptor = self.catalog.get(source_id)

        if descriptor.auth_mode == AuthMode.NONE:
            return None

        if descriptor.auth_mode == AuthMode.API_KEY:
            key = self.credentials.get_api_key(source_id)
            return Credential(
                header_name=descriptor.header_name or DEFAULT_API_KEY_HEADER,
                value=f"{descriptor.header_prefix}{key}",
            )

        token = self._get_token(descriptor)
        return Credential(header_name=descriptor.header_name or "Authorization", value=f"Bearer {token}")

    def _get_token(self, descriptor: SourceDescriptor) -> str:
        source_id = descriptor.source_id

        with self._lock_for(source_id):
            cached = self._tokens.get(source_id)
            if cached and not cached.is_expired(self._now()):
                return cached.token

            if not descriptor.token_url:
                raise AuthenticationFailed(source_id, "OAuth token_url not configured")

            client_id, client_secret = self.credentials.get_oauth_client(source_id)

            try:
                token, expires_in = self.token_exchange(
                    descriptor.token_url, client_id, client_secret, self.token_timeout
                )
            except FetchError:
                raise
            except (requests.RequestException, ValueError, KeyError) as e:
                logger.error(f"Token exchange failed for {source_id}: {e}")
                raise AuthenticationFailed(source_id, f"token exchange failed: {e}", e) from e

            expires_at = self._now() + timedelta(seconds=expires_in) - self.expiry_margin
            self._tokens[source_id] = AuthToken(token=token, expires_at=expires_at)
            logger.info(f"Acquired OAuth token for {source_id} (valid until {expires_at.isoformat()})")
            return token

    def invalidate(self, source_id: str) -> None:
        """Drop a cached token, e.g. after the source rejected it."""
        with self._lock_for(source_id):
            self._tokens.pop(source_id, None)

    def cached_token(self, source_id: str) -> Optional[AuthToken]:
        with self._lock_for(source_id):
            token = self._tokens.get(source_id)
            if token and token.is_expired(self._now()):
                return None
            return token
