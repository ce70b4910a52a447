"""
Source selection: orders the candidate sources for a category.

Ordinary categories try government sources first. Compromised categories
flip the order: alternative sources lead, and government sources follow with
a priority penalty and a discounted reliability.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..errors import NoSourceAvailable
from .catalog import SourceCatalog, SourceDescriptor, SourceKind
from .health import HealthTracker

logger = logging.getLogger(__name__)

GOVERNMENT_PRIORITY_PENALTY = 10
GOVERNMENT_RELIABILITY_DISCOUNT = 0.7


@dataclass(frozen=True)
class Candidate:
    """A descriptor with the priority and reliability effective for one category."""
    descriptor: SourceDescriptor
    priority: int
    reliability: float

    @property
    def source_id(self) -> str:
        return self.descriptor.source_id

    @property
    def kind(self) -> SourceKind:
        return self.descriptor.kind


class SourceSelector:
    """Builds the ordered candidate list for a category."""

    def __init__(self, catalog: SourceCatalog, health: Optional[HealthTracker] = None):
        self.catalog = catalog
        self.health = health or HealthTracker()

    def select(self, category: str, now: Optional[datetime] = None) -> List[Candidate]:
        """
        Ordered candidates for a category, unavailable sources removed.

        Raises:
            NoSourceAvailable: If nothing serves the category or every
                serving source is currently unavailable
        """
        compromised = self.catalog.is_compromised(category)
        serving = self.catalog.for_category(category)
        if not serving:
            raise NoSourceAvailable(category)

        skipped = self.health.unavailable_ids(now)
        candidates = []
        for descriptor in serving:
            if descriptor.source_id in skipped:
                logger.debug(f"Skipping unavailable source {descriptor.source_id} for {category}")
                continue
            candidates.append(self._candidate(descriptor, compromised))

        if not candidates:
            raise NoSourceAvailable(
                category, f"All data sources for {category} are currently unavailable"
            )

        lead = SourceKind.ALTERNATIVE if compromised else SourceKind.GOVERNMENT
        candidates.sort(key=lambda c: (
            0 if c.kind == lead else 1,
            c.priority,
            -c.reliability,
            c.source_id,
        ))

        logger.debug(
            f"Candidates for {category} (compromised={compromised}): "
            f"{[c.source_id for c in candidates]}"
        )
        return candidates

    @staticmethod
    def _candidate(descriptor: SourceDescriptor, compromised: bool) -> Candidate:
        if compromised and descriptor.is_government:
            return Candidate(
                descriptor=descriptor,
                priority=descriptor.priority + GOVERNMENT_PRIORITY_PENALTY,
                reliability=descriptor.reliability * GOVERNMENT_RELIABILITY_DISCOUNT,
            )
        return Candidate(descriptor=descriptor, priority=descriptor.priority,
                         reliability=descriptor.reliability)
