"""
Category validation rules.

Each rule lists required fields, numeric value ranges and suspicious value
patterns. Rules come from the ``validation_rules`` section of
config/sources.yaml; DEFAULT_RULES applies when the section is absent.

Pattern config::

    suspicious_patterns:
      - field: value
        above: 90
        when: {sexualOrientation: ["Lesbian, Gay or Bisexual", "LGB"]}
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .payload import is_number


@dataclass(frozen=True)
class SuspiciousPattern:
    """Flags a numeric field above/below a threshold, optionally within a slice of records."""
    field: str
    above: Optional[float] = None
    below: Optional[float] = None
    when: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    description: str = ""

    def matches(self, value: Any, record: Mapping[str, Any]) -> bool:
        if not is_number(value):
            return False
        for slice_field, allowed in self.when:
            if record.get(slice_field) not in allowed:
                return False
        if self.above is not None and value > self.above:
            return True
        if self.below is not None and value < self.below:
            return True
        return False


@dataclass(frozen=True)
class ValidationRule:
    required_fields: Tuple[str, ...] = ()
    value_ranges: Tuple[Tuple[str, float, float], ...] = ()
    suspicious_patterns: Tuple[SuspiciousPattern, ...] = ()


def pattern_from_dict(raw: Mapping[str, Any]) -> SuspiciousPattern:
    when = tuple(
        (name, tuple(values if isinstance(values, (list, tuple)) else [values]))
        for name, values in (raw.get("when") or {}).items()
    )
    return SuspiciousPattern(
        field=raw["field"],
        above=raw.get("above"),
        below=raw.get("below"),
        when=when,
        description=raw.get("description", ""),
    )


def rule_from_dict(raw: Mapping[str, Any]) -> ValidationRule:
    ranges = tuple(
        (name, float(bounds["min"]), float(bounds["max"]))
        for name, bounds in (raw.get("value_ranges") or {}).items()
    )
    return ValidationRule(
        required_fields=tuple(raw.get("required_fields") or ()),
        value_ranges=ranges,
        suspicious_patterns=tuple(pattern_from_dict(p) for p in raw.get("suspicious_patterns") or ()),
    )


DEFAULT_RULES: Dict[str, ValidationRule] = {
    "lgbtq-health": ValidationRule(
        required_fields=("sexualOrientation", "genderIdentity", "value"),
        value_ranges=(("value", 0.0, 100.0),),
        suspicious_patterns=(
            SuspiciousPattern(
                field="value",
                above=90,
                when=(("sexualOrientation", ("Lesbian, Gay or Bisexual", "LGB")),),
                description="implausibly high well-being score for LGB respondents",
            ),
        ),
    ),
    "mental-health": ValidationRule(
        required_fields=("depressionRate", "anxietyRate"),
        value_ranges=(("depressionRate", 0.0, 50.0), ("anxietyRate", 0.0, 50.0)),
        suspicious_patterns=(
            SuspiciousPattern(field="depressionRate", below=5,
                              description="suspiciously low depression rate"),
        ),
    ),
}


def rules_from_config(config: Optional[Mapping[str, Any]]) -> Dict[str, ValidationRule]:
    """Rules from a sources config, falling back to DEFAULT_RULES."""
    section = (config or {}).get("validation_rules")
    if not section:
        return dict(DEFAULT_RULES)
    return {category: rule_from_dict(raw) for category, raw in section.items()}


def find_rule(rules: Mapping[str, ValidationRule], category: str) -> Optional[ValidationRule]:
    """Exact category match, then the longest rule key contained in the category."""
    if category in rules:
        return rules[category]
    wanted = category.lower()
    matches: Sequence[str] = sorted((k for k in rules if k.lower() in wanted), key=len, reverse=True)
    return rules[matches[0]] if matches else None
