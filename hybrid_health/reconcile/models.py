"""Result models returned by the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..validation.comparator import Discrepancy
from ..validation.validator import ValidationOutcome

SWITCH_REASON_GOVERNMENT_CONFLICTS = "government_data_conflicts"


@dataclass(frozen=True)
class SourceSwitch:
    from_source: str
    to_source: str
    reason: str = SWITCH_REASON_GOVERNMENT_CONFLICTS

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.from_source, "to": self.to_source, "reason": self.reason}


@dataclass
class ValidationMetadata:
    sources_compared: List[str]
    confidence_score: float
    discrepancies: List[Discrepancy] = field(default_factory=list)
    source_switch: Optional[SourceSwitch] = None
    primary_source: Optional[str] = None
    compromised_category: bool = False
    stale: bool = False

    @property
    def source_count(self) -> int:
        return len(self.sources_compared)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources_compared": list(self.sources_compared),
            "source_count": self.source_count,
            "confidence_score": round(self.confidence_score, 4),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "source_switch": self.source_switch.to_dict() if self.source_switch else None,
            "primary_source": self.primary_source,
            "compromised_category": self.compromised_category,
            "stale": self.stale,
        }


@dataclass
class AttemptRecord:
    """One candidate's outcome within a request (provenance trail)."""
    source_id: str
    outcome: str
    error_kind: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "outcome": self.outcome,
            "error_kind": self.error_kind,
            "detail": self.detail,
        }


@dataclass
class ReconciledResult:
    category: str
    payload: Any
    source_id: str
    metadata: ValidationMetadata
    fetched_at: datetime
    offline: bool = False
    attempts: List[AttemptRecord] = field(default_factory=list)
    validation: Optional[ValidationOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "source": self.source_id,
            "offline": self.offline,
            "fetched_at": self.fetched_at.isoformat(),
            "data": self.payload,
            "metadata": self.metadata.to_dict(),
            "validation": self.validation.to_dict() if self.validation else None,
            "attempts": [a.to_dict() for a in self.attempts],
        }
