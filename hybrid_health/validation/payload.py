"""
Typed view over fetched payloads.

Raw JSON from a source is one of: a list of records, a single record, a
list of plain values, or a scalar. ``Dataset`` tags which, so the validator
and comparator can access fields by name without guessing at structure.
A list holding anything other than records is kept whole as VALUES.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class PayloadKind(Enum):
    RECORDS = "records"
    RECORD = "record"
    VALUES = "values"
    SCALAR = "scalar"


def is_number(value: Any) -> bool:
    """Numeric and finite; bools are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and not math.isinf(value)


@dataclass(frozen=True)
class Dataset:
    kind: PayloadKind
    value: Any

    @classmethod
    def from_raw(cls, raw: Any, envelope_key: Optional[str] = "data") -> "Dataset":
        """
        Classify a decoded JSON payload.

        Sources commonly wrap records as ``{"data": [...], "metadata": {...}}``;
        when ``envelope_key`` is present and holds a list or dict it is unwrapped.
        """
        if envelope_key and isinstance(raw, dict) and isinstance(raw.get(envelope_key), (list, dict)):
            raw = raw[envelope_key]

        if isinstance(raw, list):
            if all(isinstance(r, dict) for r in raw):
                return cls(PayloadKind.RECORDS, raw)
            return cls(PayloadKind.VALUES, raw)
        if isinstance(raw, dict):
            return cls(PayloadKind.RECORD, raw)
        return cls(PayloadKind.SCALAR, raw)

    def records(self) -> List[Dict[str, Any]]:
        """Records view: all records, the single record, or nothing for values and scalars."""
        if self.kind == PayloadKind.RECORDS:
            return list(self.value)
        if self.kind == PayloadKind.RECORD:
            return [self.value]
        return []

    def __len__(self) -> int:
        if self.kind == PayloadKind.VALUES:
            return len(self.value)
        if self.kind == PayloadKind.SCALAR:
            return 0 if self.value is None else 1
        return len(self.records())

    def field_values(self, name: str) -> Iterator[Any]:
        for record in self.records():
            if name in record:
                yield record[name]

    def numeric_averages(self) -> Dict[str, float]:
        """Per-field mean of numeric values across records."""
        sums: Dict[str, float] = {}
        counts: Dict[str, int] = {}
        for record in self.records():
            for name, value in record.items():
                if is_number(value):
                    sums[name] = sums.get(name, 0.0) + value
                    counts[name] = counts.get(name, 0) + 1
        return {name: sums[name] / counts[name] for name in sums}

    def map_records(self, fn) -> "Dataset":
        """New dataset with ``fn`` applied to every record; scalars pass through."""
        if self.kind == PayloadKind.RECORDS:
            return Dataset(self.kind, [fn(r) for r in self.value])
        if self.kind == PayloadKind.RECORD:
            return Dataset(self.kind, fn(self.value))
        return self

    def to_raw(self) -> Any:
        return self.value
