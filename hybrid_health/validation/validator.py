"""
Data validation for fetched datasets.

Two checks run per dataset:
  1. Structural: required fields, value ranges, missing values and
     category-specific suspicious patterns.
  2. Baseline drift: per-field numeric averages compared with the last
     known-good dataset for the category, when one exists.

A dataset is accepted iff no issue has HIGH severity.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .payload import Dataset, is_number
from .rules import DEFAULT_RULES, ValidationRule, find_rule

logger = logging.getLogger(__name__)

# Records inspected for required fields
REQUIRED_FIELD_SAMPLE = 5

# Baseline drift thresholds (fraction of baseline average)
DRIFT_MEDIUM = 0.20
DRIFT_HIGH = 0.50


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Issue:
    type: str
    severity: Severity
    field: Optional[str] = None
    value: Any = None
    record_index: Optional[int] = None
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "field": self.field,
            "value": self.value,
            "record_index": self.record_index,
            "details": self.details,
        }


@dataclass
class ValidationOutcome:
    valid: bool
    issues: List[Issue] = field(default_factory=list)
    category: str = ""
    validation_applied: bool = True

    @property
    def high_issues(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == Severity.HIGH]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "category": self.category,
            "validation_applied": self.validation_applied,
            "issues": [i.to_dict() for i in self.issues],
        }


class BaselineStore:
    """Last known-good numeric averages per category."""

    def __init__(self):
        self._baselines: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def set(self, category: str, dataset: Dataset) -> None:
        averages = dataset.numeric_averages()
        with self._lock:
            self._baselines[category] = averages

    def get(self, category: str) -> Optional[Dict[str, float]]:
        with self._lock:
            baseline = self._baselines.get(category)
            return dict(baseline) if baseline is not None else None

    def has(self, category: str) -> bool:
        with self._lock:
            return category in self._baselines


class DataValidator:
    """Checks datasets against category rules and the stored baseline."""

    def __init__(self, rules: Optional[Mapping[str, ValidationRule]] = None,
                 baselines: Optional[BaselineStore] = None):
        self.rules = dict(rules) if rules is not None else dict(DEFAULT_RULES)
        self.baselines = baselines or BaselineStore()

    def validate(self, category: str, dataset: Dataset, compare_to_baseline: bool = True) -> ValidationOutcome:
        rule = find_rule(self.rules, category)
        if rule is None:
            return ValidationOutcome(valid=True, category=category, validation_applied=False)

        issues = self.check_structure(rule, dataset)
        if compare_to_baseline:
            issues.extend(self.check_drift(category, dataset))

        valid = not any(i.severity == Severity.HIGH for i in issues)
        if not valid:
            logger.info(
                f"Dataset for {category} rejected: "
                f"{sorted({i.type for i in issues if i.severity == Severity.HIGH})}"
            )
        return ValidationOutcome(valid=valid, issues=issues, category=category)

    def check_structure(self, rule: ValidationRule, dataset: Dataset) -> List[Issue]:
        issues: List[Issue] = []
        records = dataset.records()

        if rule.required_fields:
            sample = records[:REQUIRED_FIELD_SAMPLE]
            missing = sorted({
                name for record in sample for name in rule.required_fields if record.get(name) is None
            })
            if not sample:
                missing = list(rule.required_fields)
            if missing:
                issues.append(Issue(
                    type="missing_fields",
                    severity=Severity.HIGH,
                    value=missing,
                    details=f"Required fields missing: {', '.join(missing)}",
                ))

        for index, record in enumerate(records):
            for name, low, high in rule.value_ranges:
                if name not in record:
                    continue
                value = record[name]
                if value is None:
                    issues.append(Issue(type="missing_value", severity=Severity.LOW, field=name,
                                        record_index=index, details=f"{name} is null"))
                elif is_number(value) and (value < low or value > high):
                    issues.append(Issue(
                        type="value_out_of_range",
                        severity=Severity.MEDIUM,
                        field=name,
                        value=value,
                        record_index=index,
                        details=f"{name}={value} outside [{low}, {high}]",
                    ))

            for pattern in rule.suspicious_patterns:
                value = record.get(pattern.field)
                if pattern.matches(value, record):
                    issues.append(Issue(
                        type="suspicious_pattern",
                        severity=Severity.HIGH,
                        field=pattern.field,
                        value=value,
                        record_index=index,
                        details=pattern.description,
                    ))

        return issues

    def check_drift(self, category: str, dataset: Dataset) -> List[Issue]:
        baseline = self.baselines.get(category)
        if not baseline:
            return []

        issues = []
        current = dataset.numeric_averages()
        for name, base_avg in sorted(baseline.items()):
            if name not in current or base_avg == 0:
                continue
            drift = abs(current[name] - base_avg) / abs(base_avg)
            if drift > DRIFT_HIGH:
                severity = Severity.HIGH
            elif drift > DRIFT_MEDIUM:
                severity = Severity.MEDIUM
            else:
                continue
            issues.append(Issue(
                type="baseline_deviation",
                severity=severity,
                field=name,
                value=current[name],
                details=f"{name} average {current[name]:.2f} vs baseline {base_avg:.2f} "
                        f"({drift * 100:.1f}% drift)",
            ))
        return issues

    def is_integrity_verified(self, category: str, dataset: Dataset) -> bool:
        """True when the structural check raises no HIGH issue (drift not considered)."""
        rule = find_rule(self.rules, category)
        if rule is None:
            return True
        return not any(i.severity == Severity.HIGH for i in self.check_structure(rule, dataset))
