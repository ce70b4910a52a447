"""
Fetch orchestrator: one authenticated, time-bounded fetch from one source.

Every call that reaches the source updates that source's health exactly
once. Transport failures are mapped onto the typed FetchError taxonomy.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..errors import (
    AuthenticationFailed,
    BadResponse,
    FetchCancelled,
    FetchTimeout,
    Unauthorized,
    Unreachable,
)
from ..validation.payload import Dataset
from ..validation.validator import DataValidator
from .auth import AuthProvider
from .catalog import SourceCatalog, SourceKind
from .health import HealthTracker
from .transport import RequestsTransport, Transport, TransportError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 15


@dataclass
class FetchResult:
    source_id: str
    kind: SourceKind
    endpoint: str
    payload: Dataset
    fetched_at: datetime
    reliability: float
    integrity_verified: bool = False


class FetchOrchestrator:
    """Fetches from a single source and records the outcome in the health tracker."""

    def __init__(
        self,
        catalog: SourceCatalog,
        auth: AuthProvider,
        health: HealthTracker,
        transport: Optional[Transport] = None,
        validator: Optional[DataValidator] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        normalize: Optional[Callable[[str, str, Dataset], Dataset]] = None,
    ):
        self.catalog = catalog
        self.auth = auth
        self.health = health
        self.transport = transport or RequestsTransport()
        self.validator = validator or DataValidator()
        self.timeout = timeout
        self.normalize = normalize

    def fetch(
        self,
        source_id: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        """
        Fetch one endpoint of one source.

        Args:
            source_id: Catalog id of the source
            endpoint: Logical endpoint name (see SourceDescriptor.endpoints)
            params: Query parameters passed through to the transport
            category: Category being served; drives normalization and the
                integrity check
            cancel_event: Request-scoped signal; when set before the source
                is contacted the fetch is abandoned

        Raises:
            FetchCancelled: Cancelled before contacting the source
            AuthenticationFailed: Credential could not be resolved
            FetchTimeout, Unauthorized, Unreachable, BadResponse: Fetch failed
        """
        if cancel_event is not None and cancel_event.is_set():
            raise FetchCancelled(source_id, "request no longer needs this source")

        descriptor = self.catalog.get(source_id)

        try:
            credential = self.auth.get_credential(source_id) if descriptor.requires_auth else None
        except AuthenticationFailed as e:
            self.health.record_failure(source_id, str(e))
            raise

        if cancel_event is not None and cancel_event.is_set():
            raise FetchCancelled(source_id, "request no longer needs this source")

        logger.debug(f"Fetching {source_id} endpoint '{endpoint}'")
        try:
            response = self.transport.do(descriptor, endpoint, params or {}, credential, self.timeout)
        except TransportError as e:
            self.health.record_failure(source_id, str(e))
            if e.timeout:
                raise FetchTimeout(source_id, str(e), e.original_error or e) from e
            raise Unreachable(source_id, str(e), e.original_error or e) from e

        status = response.status_code
        if status in (401, 403):
            self.auth.invalidate(source_id)
            self.health.record_failure(source_id, f"HTTP {status}")
            raise Unauthorized(source_id, f"HTTP {status}")

        if not 200 <= status < 300:
            self.health.record_failure(source_id, f"HTTP {status}")
            raise BadResponse(source_id, f"HTTP {status}")

        if response.payload is None:
            self.health.record_failure(source_id, "undecodable payload")
            raise BadResponse(source_id, "response body could not be decoded")

        dataset = Dataset.from_raw(response.payload)
        if self.normalize is not None and category:
            dataset = self.normalize(category, source_id, dataset)

        integrity = False
        if descriptor.is_government and category and not self.catalog.is_compromised(category):
            integrity = self.validator.is_integrity_verified(category, dataset)

        self.health.record_success(source_id, integrity_verified=integrity)
        logger.info(f"Fetched {len(dataset)} item(s) from {source_id}")

        return FetchResult(
            source_id=source_id,
            kind=descriptor.kind,
            endpoint=endpoint,
            payload=dataset,
            fetched_at=datetime.now(timezone.utc),
            reliability=descriptor.reliability,
            integrity_verified=integrity,
        )
