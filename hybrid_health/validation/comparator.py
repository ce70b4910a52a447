"""
Cross-source comparison.

Sampling comparison: record counts plus the first N paired records, field by
field. Numeric values agree within a relative tolerance; everything else
must match exactly.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .payload import Dataset, PayloadKind, is_number

DEFAULT_SAMPLE_SIZE = 10
DEFAULT_TOLERANCE = 0.01


@dataclass
class Discrepancy:
    type: str
    source_a: str
    source_b: str
    field: Optional[str] = None
    value_a: Any = None
    value_b: Any = None
    record_index: Optional[int] = None
    percent_diff: Optional[float] = None
    categorical: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "field": self.field,
            "value_a": self.value_a,
            "value_b": self.value_b,
            "source_a": self.source_a,
            "source_b": self.source_b,
            "record_index": self.record_index,
            "percent_diff": self.percent_diff,
            "categorical": self.categorical,
        }


def within_tolerance(a: float, b: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    return abs(a - b) <= max(abs(a), abs(b)) * tolerance


def percent_difference(a: float, b: float) -> Optional[float]:
    """|a - b| relative to a, in percent; None when a is zero."""
    if a == 0:
        return None
    return abs((a - b) / a) * 100


class CrossSourceComparator:

    def __init__(self, sample_size: int = DEFAULT_SAMPLE_SIZE, tolerance: float = DEFAULT_TOLERANCE):
        self.sample_size = sample_size
        self.tolerance = tolerance

    def compare(self, a: Dataset, b: Dataset, source_a: str = "", source_b: str = "") -> List[Discrepancy]:
        if a.kind != b.kind:
            return [Discrepancy(type="shape", source_a=source_a, source_b=source_b,
                                value_a=a.kind.value, value_b=b.kind.value, categorical=True)]

        if a.kind in (PayloadKind.SCALAR, PayloadKind.VALUES):
            found = self._compare_values(None, a.value, b.value, source_a, source_b, None)
            return [found] if found else []

        if a.kind == PayloadKind.RECORD:
            return self._compare_records(a.value, b.value, source_a, source_b, None)

        discrepancies = []
        records_a, records_b = a.records(), b.records()
        if len(records_a) != len(records_b):
            discrepancies.append(Discrepancy(
                type="record_count",
                source_a=source_a,
                source_b=source_b,
                value_a=len(records_a),
                value_b=len(records_b),
                percent_diff=percent_difference(len(records_a), len(records_b)),
            ))

        sample = min(self.sample_size, len(records_a), len(records_b))
        for index in range(sample):
            discrepancies.extend(
                self._compare_records(records_a[index], records_b[index], source_a, source_b, index)
            )
        return discrepancies

    def _compare_records(self, rec_a: Mapping[str, Any], rec_b: Mapping[str, Any],
                         source_a: str, source_b: str, index: Optional[int]) -> List[Discrepancy]:
        found = []
        for name in rec_a:
            if name not in rec_b:
                continue
            discrepancy = self._compare_values(name, rec_a[name], rec_b[name], source_a, source_b, index)
            if discrepancy:
                found.append(discrepancy)
        return found

    def _compare_values(self, name: Optional[str], value_a: Any, value_b: Any,
                        source_a: str, source_b: str, index: Optional[int]) -> Optional[Discrepancy]:
        if is_number(value_a) and is_number(value_b):
            if within_tolerance(value_a, value_b, self.tolerance):
                return None
            return Discrepancy(
                type="value", source_a=source_a, source_b=source_b, field=name,
                value_a=value_a, value_b=value_b, record_index=index,
                percent_diff=percent_difference(value_a, value_b),
            )

        if value_a == value_b:
            return None
        return Discrepancy(
            type="value", source_a=source_a, source_b=source_b, field=name,
            value_a=value_a, value_b=value_b, record_index=index, categorical=True,
        )
