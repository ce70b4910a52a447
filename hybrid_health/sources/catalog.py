"""
Source catalog: the read-only registry of every known data source.

Loaded once from config/sources.yaml and never mutated afterwards. The same
file also carries the compromised-category list, per-source field mappings
and validation rules; those sections are read by their own modules.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

import jsonschema
import yaml

from ..errors import CatalogError

logger = logging.getLogger(__name__)


class SourceKind(Enum):
    GOVERNMENT = "government"
    ALTERNATIVE = "alternative"


class AuthMode(Enum):
    NONE = "none"
    API_KEY = "apiKey"
    OAUTH = "oauth"


DEFAULT_PRIORITY = 5
DEFAULT_API_KEY_HEADER = "X-API-Key"


SOURCES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["sources"],
    "properties": {
        "compromised_categories": {"type": "array", "items": {"type": "string"}},
        "sources": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "base_url", "kind", "reliability", "categories"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string"},
                    "base_url": {"type": "string"},
                    "kind": {"enum": [k.value for k in SourceKind]},
                    "auth": {"enum": [m.value for m in AuthMode]},
                    "reliability": {"type": "number", "minimum": 0, "maximum": 1},
                    "priority": {"type": "integer"},
                    "categories": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                    "endpoints": {"type": "object", "additionalProperties": {"type": "string"}},
                    "token_url": {"type": "string"},
                    "header_name": {"type": "string"},
                    "header_prefix": {"type": "string"},
                    "integrity_verification_required": {"type": "boolean"},
                    "data_date": {"type": "string"},
                },
            },
        },
        "field_mappings": {"type": "object"},
        "validation_rules": {"type": "object"},
    },
}


@dataclass(frozen=True)
class SourceDescriptor:
    """Immutable description of one external provider."""
    source_id: str
    base_url: str
    kind: SourceKind
    reliability: float
    categories: FrozenSet[str]
    auth_mode: AuthMode = AuthMode.NONE
    priority: int = DEFAULT_PRIORITY
    name: str = ""
    endpoints: Tuple[Tuple[str, str], ...] = ()
    token_url: Optional[str] = None
    header_name: Optional[str] = None
    header_prefix: str = ""
    integrity_verification_required: bool = False
    data_date: Optional[str] = None

    @property
    def requires_auth(self) -> bool:
        return self.auth_mode != AuthMode.NONE

    @property
    def is_government(self) -> bool:
        return self.kind == SourceKind.GOVERNMENT

    def serves(self, category: str) -> bool:
        """True when a tag equals the category or is contained in it."""
        wanted = category.lower()
        return any(tag.lower() == wanted or tag.lower() in wanted for tag in self.categories)

    def endpoint_for(self, category: str) -> str:
        """
        Resolve the logical endpoint name used for a category.

        Exact endpoint key first, then a key containing the category, then the
        first declared endpoint. Sources without endpoints are fetched at base_url.
        """
        if not self.endpoints:
            return ""
        names = [name for name, _ in self.endpoints]
        if category in names:
            return category
        for name in names:
            if category.lower() in name.lower():
                return name
        return names[0]

    def url_for(self, endpoint: str) -> str:
        paths = dict(self.endpoints)
        if endpoint and endpoint not in paths:
            raise CatalogError(f"Unknown endpoint '{endpoint}' for source {self.source_id}")
        return f"{self.base_url.rstrip('/')}{paths.get(endpoint, '')}"


def descriptor_from_dict(raw: Mapping[str, Any]) -> SourceDescriptor:
    """Build a descriptor from one validated `sources` entry."""
    return SourceDescriptor(
        source_id=raw["id"],
        name=raw.get("name", raw["id"].replace("_", " ")),
        base_url=raw["base_url"],
        kind=SourceKind(raw["kind"]),
        auth_mode=AuthMode(raw.get("auth", AuthMode.NONE.value)),
        reliability=float(raw["reliability"]),
        priority=int(raw.get("priority", DEFAULT_PRIORITY)),
        categories=frozenset(raw["categories"]),
        endpoints=tuple((raw.get("endpoints") or {}).items()),
        token_url=raw.get("token_url"),
        header_name=raw.get("header_name"),
        header_prefix=raw.get("header_prefix", ""),
        integrity_verification_required=bool(raw.get("integrity_verification_required", False)),
        data_date=raw.get("data_date"),
    )


class SourceCatalog:
    """Registry of descriptors plus the static compromised-category list."""

    def __init__(self, descriptors: Iterable[SourceDescriptor],
                 compromised_categories: Iterable[str] = ()):
        self._by_id: Dict[str, SourceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.source_id in self._by_id:
                raise CatalogError(f"Duplicate source id: {descriptor.source_id}")
            self._by_id[descriptor.source_id] = descriptor
        self.compromised_categories: Tuple[str, ...] = tuple(compromised_categories)

    def __iter__(self) -> Iterator[SourceDescriptor]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._by_id

    def get(self, source_id: str) -> SourceDescriptor:
        try:
            return self._by_id[source_id]
        except KeyError:
            raise CatalogError(f"Unknown data source: {source_id}") from None

    def for_category(self, category: str) -> List[SourceDescriptor]:
        return [d for d in self._by_id.values() if d.serves(category)]

    def categories(self) -> List[str]:
        """All category tags declared across sources, sorted."""
        tags = set()
        for descriptor in self._by_id.values():
            tags.update(descriptor.categories)
        return sorted(tags)

    def is_compromised(self, category: str) -> bool:
        return is_compromised_category(category, self.compromised_categories)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SourceCatalog":
        validate_sources_config(config)
        return cls(
            (descriptor_from_dict(raw) for raw in config["sources"]),
            compromised_categories=config.get("compromised_categories", []),
        )


def is_compromised_category(category: str, compromised: Iterable[str]) -> bool:
    """Case-insensitive substring match of any compromised entry against the category."""
    wanted = category.lower()
    return any(entry.lower() in wanted for entry in compromised)


def validate_sources_config(config: Mapping[str, Any]) -> None:
    """
    Validate a sources config against SOURCES_SCHEMA.

    Raises:
        CatalogError: If the schema check fails
    """
    try:
        jsonschema.validate(dict(config), SOURCES_SCHEMA)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "<root>"
        raise CatalogError(f"Invalid sources config at {path}: {e.message}") from e


def load_sources_config(path: str) -> Dict[str, Any]:
    """
    Load and validate config/sources.yaml.

    Raises:
        CatalogError: If the file is missing, unparsable or invalid
    """
    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Failed to load sources config from {path}: {e}") from e

    validate_sources_config(config)
    return config


def load_catalog(path: str) -> SourceCatalog:
    """Load the catalog from a sources YAML file."""
    catalog = SourceCatalog.from_config(load_sources_config(path))
    logger.info(f"Loaded {len(catalog)} sources from {path}")
    return catalog
