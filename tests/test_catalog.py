"""Tests for the source catalog and sources.yaml loading."""

from pathlib import Path

import pytest
import yaml

from hybrid_health.errors import CatalogError
from hybrid_health.sources.catalog import (
    AuthMode,
    SourceCatalog,
    SourceKind,
    descriptor_from_dict,
    is_compromised_category,
    load_catalog,
    validate_sources_config,
)

from fakes import make_catalog, make_descriptor

REPO_SOURCES = Path(__file__).resolve().parent.parent / "config" / "sources.yaml"


class TestDescriptor:
    """Tests for SourceDescriptor helpers."""

    def test_serves_exact_and_substring(self):
        d = make_descriptor("A", categories=("lgbtq", "youth"))
        assert d.serves("lgbtq")
        assert d.serves("lgbtq-health")
        assert d.serves("youth-risk")
        assert not d.serves("mortality")

    def test_requires_auth(self):
        assert make_descriptor("A", auth="apiKey").requires_auth
        assert not make_descriptor("B").requires_auth

    def test_endpoint_for_prefers_exact_then_contains(self):
        d = make_descriptor("A", endpoints=(("lgbtq-health-disparities", "/d"), ("sogi", "/s")))
        assert d.endpoint_for("lgbtq-health") == "lgbtq-health-disparities"
        assert d.endpoint_for("sogi") == "sogi"
        assert d.endpoint_for("other") == "lgbtq-health-disparities"

    def test_endpoint_for_without_endpoints(self):
        assert make_descriptor("A").endpoint_for("lgbtq-health") == ""

    def test_url_for(self):
        d = make_descriptor("A", endpoints=(("lgbtq-health", "/lgbtq-health"),))
        assert d.url_for("lgbtq-health") == "https://a.example.org/api/lgbtq-health"
        assert d.url_for("") == "https://a.example.org/api"

    def test_url_for_unknown_endpoint(self):
        with pytest.raises(CatalogError):
            make_descriptor("A").url_for("nope")

    def test_descriptor_from_dict_defaults(self):
        d = descriptor_from_dict({
            "id": "X_SRC",
            "base_url": "https://x.org",
            "kind": "government",
            "reliability": 0.8,
            "categories": ["global"],
        })
        assert d.kind == SourceKind.GOVERNMENT
        assert d.auth_mode == AuthMode.NONE
        assert d.priority == 5
        assert d.name == "X SRC"


class TestCompromisedCategories:
    """Tests for compromised-category matching."""

    def test_substring_match_case_insensitive(self):
        assert is_compromised_category("LGBTQ-Health", ["lgbtq"])
        assert is_compromised_category("youth-risk-behaviors", ["youth-risk"])

    def test_non_compromised(self):
        assert not is_compromised_category("mortality", ["lgbtq", "youth-risk"])

    def test_catalog_delegates(self):
        catalog = make_catalog(make_descriptor("A"))
        assert catalog.is_compromised("lgbtq-health")
        assert not catalog.is_compromised("nutrition")


class TestSourceCatalog:
    """Tests for the registry."""

    def test_get_unknown_raises(self):
        with pytest.raises(CatalogError):
            make_catalog().get("missing")

    def test_duplicate_ids_rejected(self):
        with pytest.raises(CatalogError):
            SourceCatalog([make_descriptor("A"), make_descriptor("A")])

    def test_for_category(self):
        catalog = make_catalog(
            make_descriptor("A", categories=("lgbtq",)),
            make_descriptor("B", categories=("mortality",)),
        )
        assert [d.source_id for d in catalog.for_category("lgbtq-health")] == ["A"]

    def test_categories_sorted(self):
        catalog = make_catalog(
            make_descriptor("A", categories=("youth", "lgbtq")),
            make_descriptor("B", categories=("lgbtq",)),
        )
        assert catalog.categories() == ["lgbtq", "youth"]

    def test_contains_and_len(self):
        catalog = make_catalog(make_descriptor("A"), make_descriptor("B"))
        assert "A" in catalog
        assert len(catalog) == 2


class TestSourcesConfig:
    """Tests for YAML loading and schema validation."""

    def test_repo_config_is_valid(self):
        catalog = load_catalog(str(REPO_SOURCES))
        assert "FENWAY_INSTITUTE" in catalog
        fenway = catalog.get("FENWAY_INSTITUTE")
        assert fenway.auth_mode == AuthMode.API_KEY
        assert fenway.header_prefix == "Bearer "
        assert catalog.get("THE_19TH_ARCHIVE").token_url.endswith("/oauth/token")
        assert catalog.is_compromised("lgbtq-health")

    def test_missing_required_field(self):
        with pytest.raises(CatalogError, match="sources.0"):
            validate_sources_config({"sources": [{"id": "A", "kind": "government"}]})

    def test_bad_reliability(self):
        config = {"sources": [{
            "id": "A", "base_url": "https://a", "kind": "government",
            "reliability": 1.5, "categories": ["x"],
        }]}
        with pytest.raises(CatalogError):
            validate_sources_config(config)

    def test_bad_kind(self):
        config = {"sources": [{
            "id": "A", "base_url": "https://a", "kind": "corporate",
            "reliability": 0.5, "categories": ["x"],
        }]}
        with pytest.raises(CatalogError):
            validate_sources_config(config)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(CatalogError):
            load_catalog(str(tmp_path / "nope.yaml"))

    def test_load_from_tmp_file(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text(yaml.safe_dump({
            "compromised_categories": ["lgbtq"],
            "sources": [{
                "id": "ALT", "base_url": "https://alt.org", "kind": "alternative",
                "reliability": 0.9, "categories": ["lgbtq"], "auth": "oauth",
                "token_url": "https://alt.org/token",
            }],
        }))
        catalog = load_catalog(str(path))
        assert catalog.get("ALT").auth_mode == AuthMode.OAUTH
        assert catalog.compromised_categories == ("lgbtq",)
