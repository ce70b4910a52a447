"""Tests for the fetch orchestrator: error mapping and health bookkeeping."""

import threading
from unittest.mock import MagicMock

import pytest

from hybrid_health.config.secrets import CredentialStore
from hybrid_health.errors import (
    BadResponse,
    FetchCancelled,
    FetchTimeout,
    MissingCredential,
    Unauthorized,
    Unreachable,
)
from hybrid_health.reconcile.normalizer import FieldNormalizer
from hybrid_health.sources.auth import AuthProvider
from hybrid_health.sources.fetcher import FetchOrchestrator
from hybrid_health.sources.health import HealthTracker
from hybrid_health.sources.transport import TransportError, TransportResponse
from hybrid_health.validation.payload import PayloadKind

from fakes import FakeTransport, make_catalog, make_descriptor

MENTAL_RECORDS = [
    {"region": "north", "depressionRate": 18.0, "anxietyRate": 21.0},
    {"region": "south", "depressionRate": 16.5, "anxietyRate": 19.0},
]


@pytest.fixture
def catalog():
    return make_catalog(
        make_descriptor("GOV", kind="government", categories=("mental", "lgbtq")),
        make_descriptor("ALT", kind="alternative", categories=("mental", "lgbtq")),
        make_descriptor("KEYED", kind="government", auth="apiKey", categories=("mental",)),
    )


def build(catalog, transport, health=None, store=None, normalize=None):
    health = health or HealthTracker()
    auth = AuthProvider(catalog, store or CredentialStore(environ={}))
    return FetchOrchestrator(catalog, auth, health, transport=transport, normalize=normalize), health


class TestFetchSuccess:
    """Successful fetches."""

    def test_records_success_and_wraps_payload(self, catalog):
        fetcher, health = build(catalog, FakeTransport({"ALT": {"data": MENTAL_RECORDS}}))
        result = fetcher.fetch("ALT", "", {"year": 2024}, category="mental-health")

        assert result.source_id == "ALT"
        assert result.payload.kind == PayloadKind.RECORDS
        assert len(result.payload) == 2
        assert result.reliability == 0.9
        assert health.status("ALT").total_successes == 1

    def test_government_integrity_verified(self, catalog):
        fetcher, health = build(catalog, FakeTransport({"GOV": MENTAL_RECORDS}))
        result = fetcher.fetch("GOV", "", category="mental-health")
        assert result.integrity_verified is True
        assert health.status("GOV").integrity_verified is True

    def test_alternative_never_integrity_verified(self, catalog):
        fetcher, _ = build(catalog, FakeTransport({"ALT": MENTAL_RECORDS}))
        assert fetcher.fetch("ALT", "", category="mental-health").integrity_verified is False

    def test_compromised_government_not_verified(self, catalog):
        records = [{"sexualOrientation": "LGB", "genderIdentity": "cis", "value": 40}]
        fetcher, _ = build(catalog, FakeTransport({"GOV": records}))
        assert fetcher.fetch("GOV", "", category="lgbtq-health").integrity_verified is False

    def test_structural_problem_not_verified(self, catalog):
        fetcher, _ = build(catalog, FakeTransport({"GOV": [{"region": "north"}]}))
        assert fetcher.fetch("GOV", "", category="mental-health").integrity_verified is False

    def test_credential_passed_to_transport(self, catalog):
        transport = FakeTransport({"KEYED": MENTAL_RECORDS})
        store = CredentialStore(values={"KEYED_API_KEY": "secret"}, environ={})
        fetcher, _ = build(catalog, transport, store=store)
        fetcher.fetch("KEYED", "", category="mental-health")
        assert transport.calls[0]["credential"].as_headers() == {"X-API-Key": "secret"}
        assert transport.calls[0]["timeout"] == 15

    def test_normalizer_applied(self, catalog):
        normalizer = FieldNormalizer({"mental-health": {"ALT": {"depression_rate": "depressionRate"}}})
        transport = FakeTransport({"ALT": [{"depression_rate": 12.0, "anxietyRate": 10.0}]})
        fetcher, _ = build(catalog, transport, normalize=normalizer)
        result = fetcher.fetch("ALT", "", category="mental-health")
        assert result.payload.records() == [{"depressionRate": 12.0, "anxietyRate": 10.0}]


class TestFetchFailures:
    """Each failure maps onto its error kind and records one health failure."""

    def test_timeout(self, catalog):
        transport = FakeTransport({"ALT": TransportError("slow", timeout=True)})
        fetcher, health = build(catalog, transport)
        with pytest.raises(FetchTimeout) as exc:
            fetcher.fetch("ALT", "")
        assert exc.value.kind == "Timeout"
        assert health.status("ALT").consecutive_failures == 1

    def test_unreachable(self, catalog):
        fetcher, health = build(catalog, FakeTransport({}))
        with pytest.raises(Unreachable):
            fetcher.fetch("ALT", "")
        assert health.status("ALT").consecutive_failures == 1

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, catalog, status):
        transport = FakeTransport({"ALT": TransportResponse(status, {"error": "denied"})})
        fetcher, health = build(catalog, transport)
        fetcher.auth = MagicMock(wraps=fetcher.auth)
        with pytest.raises(Unauthorized):
            fetcher.fetch("ALT", "")
        fetcher.auth.invalidate.assert_called_once_with("ALT")
        assert health.status("ALT").last_error == f"HTTP {status}"

    def test_server_error_is_bad_response(self, catalog):
        transport = FakeTransport({"ALT": TransportResponse(500, None)})
        fetcher, health = build(catalog, transport)
        with pytest.raises(BadResponse):
            fetcher.fetch("ALT", "")
        assert health.status("ALT").consecutive_failures == 1

    def test_undecodable_payload_is_bad_response(self, catalog):
        transport = FakeTransport({"ALT": TransportResponse(200, None)})
        fetcher, _ = build(catalog, transport)
        with pytest.raises(BadResponse):
            fetcher.fetch("ALT", "")

    def test_missing_credential_is_health_failure(self, catalog):
        transport = FakeTransport({"KEYED": MENTAL_RECORDS})
        fetcher, health = build(catalog, transport)
        with pytest.raises(MissingCredential):
            fetcher.fetch("KEYED", "")
        assert transport.calls == []
        assert health.status("KEYED").consecutive_failures == 1

    def test_three_failures_mark_unavailable(self, catalog):
        fetcher, health = build(catalog, FakeTransport({}))
        for _ in range(3):
            with pytest.raises(Unreachable):
                fetcher.fetch("ALT", "")
        assert health.is_available("ALT") is False


class TestCancellation:
    """Fetches cancelled before contact touch nothing."""

    def test_cancelled_before_start(self, catalog):
        transport = FakeTransport({"ALT": MENTAL_RECORDS})
        fetcher, health = build(catalog, transport)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(FetchCancelled) as exc:
            fetcher.fetch("ALT", "", cancel_event=cancel)

        assert exc.value.kind == "Cancelled"
        assert transport.calls == []
        assert "ALT" not in health.sources
