"""Transport boundary: performs one authenticated GET against a source.

The engine only depends on ``Transport.do``. ``RequestsTransport`` is the
default adapter; retries for network transients live here, never in the
engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .catalog import SourceDescriptor

if TYPE_CHECKING:
    from .auth import Credential

logger = logging.getLogger(__name__)

USER_AGENT = "hybrid-health/1.0"


@dataclass
class TransportResponse:
    status_code: int
    payload: Any


class TransportError(Exception):
    """Raised when no HTTP response was obtained."""

    def __init__(self, message: str, timeout: bool = False, original_error: Optional[Exception] = None):
        self.timeout = timeout
        self.original_error = original_error
        super().__init__(message)


class Transport(ABC):
    """Performs the request; knows nothing about health, auth or validation."""

    @abstractmethod
    def do(
        self,
        descriptor: SourceDescriptor,
        endpoint: str,
        params: Dict[str, Any],
        credential: Optional["Credential"],
        timeout: float,
    ) -> TransportResponse:
        """
        Issue a GET for a source endpoint.

        Returns:
            TransportResponse with status code and decoded payload (None if the
            body could not be decoded)

        Raises:
            TransportError: On timeout or connection failure
        """


def build_session(total_retries: int = 1) -> requests.Session:
    """Session with a small retry budget for 502/503/504 transients."""
    retry = Retry(total=total_retries, allowed_methods=["GET", "POST"], backoff_factor=1,
                  status_forcelist=[502, 503, 504])
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


class RequestsTransport(Transport):
    """Default transport built on a shared requests session."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or build_session()

    def do(self, descriptor, endpoint, params, credential, timeout):
        url = descriptor.url_for(endpoint)
        headers = credential.as_headers() if credential else {}

        try:
            response = self.session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            raise TransportError(f"Request to {url} timed out after {timeout}s", timeout=True,
                                 original_error=e) from e
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}", original_error=e) from e

        try:
            payload = response.json()
        except ValueError:
            logger.debug(f"Non-JSON body from {url} (status {response.status_code})")
            payload = None

        return TransportResponse(status_code=response.status_code, payload=payload)

