"""
Field normalization across sources.

Sources publish the same measure under different names. The
``field_mappings`` section of config/sources.yaml maps each source's field
names onto canonical ones, per category:

    field_mappings:
      lgbtq-health:
        FENWAY_INSTITUTE:
          depression_rate: depressionRate
"""

import logging
from typing import Any, Dict, Mapping, Optional

from ..validation.payload import Dataset

logger = logging.getLogger(__name__)


class FieldNormalizer:

    def __init__(self, mappings: Optional[Mapping[str, Mapping[str, Mapping[str, str]]]] = None):
        self.mappings: Dict[str, Dict[str, Dict[str, str]]] = {
            category: {source: dict(fields) for source, fields in (per_source or {}).items()}
            for category, per_source in (mappings or {}).items()
        }

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "FieldNormalizer":
        return cls((config or {}).get("field_mappings") or {})

    def mapping_for(self, category: str, source_id: str) -> Dict[str, str]:
        return self.mappings.get(category, {}).get(source_id, {})

    def normalize(self, category: str, source_id: str, dataset: Dataset) -> Dataset:
        """Rename mapped fields; unmapped fields pass through unchanged."""
        mapping = self.mapping_for(category, source_id)
        if not mapping:
            return dataset

        def rename(record: Mapping[str, Any]) -> Dict[str, Any]:
            return {mapping.get(name, name): value for name, value in record.items()}

        logger.debug(f"Normalizing {len(mapping)} field(s) from {source_id} for {category}")
        return dataset.map_records(rename)

    __call__ = normalize
