"""
Reconciliation engine: the public entry point.

A request moves through SelectingSource -> Fetching -> Validating/Comparing
-> Deciding and ends in a ReconciledResult or a terminal error:

  1. The selector orders the candidates for the category.
  2. Candidates are fetched with bounded fan-out. The first candidate in
     order whose data validates is the primary; a few more accepted
     datasets are gathered within a comparison window.
  3. Every pair of accepted datasets is compared and the confidence score
     adjusted. In a compromised category a government dataset that
     disagrees with two or more others is replaced by the most reliable
     other dataset (the source switch).
  4. Success is written through to the offline cache. When every candidate
     fails, the cached snapshot is served with a discounted confidence.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import combinations
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..cache.offline import OfflineCache
from ..config.secrets import CredentialStore
from ..config.settings import get_engine_settings
from ..errors import AllSourcesExhausted, CacheError, FetchCancelled, FetchError, ValidationFailed
from ..sources.auth import AuthProvider
from ..sources.catalog import SourceCatalog
from ..sources.fetcher import FetchOrchestrator, FetchResult
from ..sources.health import HealthTracker
from ..sources.selector import Candidate, SourceSelector
from ..sources.transport import Transport
from ..validation.comparator import CrossSourceComparator, Discrepancy
from ..validation.rules import rules_from_config
from ..validation.validator import DataValidator, ValidationOutcome
from .models import AttemptRecord, ReconciledResult, SourceSwitch, ValidationMetadata
from .normalizer import FieldNormalizer

logger = logging.getLogger(__name__)

# Confidence adjustments per compared pair
PAIR_DISCREPANCY_WEIGHT = 0.02
PAIR_PENALTY_CAP = 0.3
PAIR_AGREEMENT_BONUS = 0.05

# Other datasets that must disagree with the government source before switching
SWITCH_MIN_CONFLICTS = 2

OFFLINE_CONFIDENCE_DISCOUNT = 0.7
OFFLINE_SOURCE_ID = "offline_cache"


@dataclass
class _Accepted:
    index: int
    candidate: Candidate
    result: FetchResult
    outcome: ValidationOutcome


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ReconciliationEngine:
    """Selects, fetches, validates and reconciles data for a category."""

    def __init__(
        self,
        catalog: SourceCatalog,
        fetcher: FetchOrchestrator,
        health: Optional[HealthTracker] = None,
        selector: Optional[SourceSelector] = None,
        validator: Optional[DataValidator] = None,
        comparator: Optional[CrossSourceComparator] = None,
        cache: Optional[OfflineCache] = None,
        max_parallel: int = 3,
        max_comparison_sources: int = 2,
        comparison_window: float = 20.0,
    ):
        self.catalog = catalog
        self.fetcher = fetcher
        self.health = health or fetcher.health
        self.selector = selector or SourceSelector(catalog, self.health)
        self.validator = validator or fetcher.validator
        self.comparator = comparator or CrossSourceComparator()
        self.cache = cache or OfflineCache()
        self.max_parallel = max(1, max_parallel)
        self.max_comparison_sources = max(0, max_comparison_sources)
        self.comparison_window = comparison_window

    @classmethod
    def from_config(
        cls,
        sources_config: Mapping[str, Any],
        settings: Optional[Dict[str, Any]] = None,
        health: Optional[HealthTracker] = None,
        transport: Optional[Transport] = None,
        credentials: Optional[CredentialStore] = None,
    ) -> "ReconciliationEngine":
        """Wire every collaborator from a sources config and engine settings."""
        settings = settings or get_engine_settings()
        catalog = SourceCatalog.from_config(sources_config)
        health = health or HealthTracker(timedelta(minutes=settings['reprobe_after_minutes']))
        auth = AuthProvider(
            catalog,
            credentials,
            token_timeout=settings['token_timeout_seconds'],
            expiry_margin=timedelta(seconds=settings['token_expiry_margin_seconds']),
        )
        validator = DataValidator(rules_from_config(sources_config))
        fetcher = FetchOrchestrator(
            catalog,
            auth,
            health,
            transport=transport,
            validator=validator,
            timeout=settings['fetch_timeout_seconds'],
            normalize=FieldNormalizer.from_config(sources_config),
        )
        cache = OfflineCache(settings['cache_dir'], timedelta(days=settings['cache_max_age_days']))
        return cls(
            catalog,
            fetcher,
            health=health,
            validator=validator,
            cache=cache,
            max_parallel=settings['max_parallel_fetches'],
            max_comparison_sources=settings['max_comparison_sources'],
            comparison_window=settings['comparison_window_seconds'],
        )

    def get_category_data(self, category: str, params: Optional[Dict[str, Any]] = None,
                          compare: bool = True) -> ReconciledResult:
        """
        Fetch and reconcile data for a category.

        Args:
            category: Data category, e.g. "lgbtq-health"
            params: Query parameters passed to every source
            compare: Gather extra datasets for cross-source comparison

        Returns:
            ReconciledResult (offline=True when served from the cache)

        Raises:
            NoSourceAvailable: Nothing can serve the category right now
            AllSourcesExhausted: Every candidate failed and nothing is cached
        """
        compromised = self.catalog.is_compromised(category)
        candidates = self.selector.select(category)
        logger.info(
            f"Requesting {category} from {len(candidates)} candidate(s)"
            f"{' (compromised category)' if compromised else ''}"
        )

        accepted, attempts = self._gather(category, candidates, params or {}, compare)

        if not accepted:
            return self._offline_fallback(category, compromised, attempts)

        result = self._decide(category, compromised, accepted, attempts)

        try:
            self.cache.put(category, result.payload, {
                "source_id": result.source_id,
                "confidence_score": result.metadata.confidence_score,
                "sources_compared": result.metadata.sources_compared,
            })
        except CacheError as e:
            logger.warning(f"Offline cache write failed for {category}: {e}")

        return result

    def _attempt(self, candidate: Candidate, category: str, params: Dict[str, Any],
                 cancel: threading.Event) -> Tuple[FetchResult, ValidationOutcome]:
        endpoint = candidate.descriptor.endpoint_for(category)
        result = self.fetcher.fetch(candidate.source_id, endpoint, params,
                                    category=category, cancel_event=cancel)
        return result, self.validator.validate(category, result.payload)

    def _gather(self, category: str, candidates: List[Candidate], params: Dict[str, Any],
                compare: bool) -> Tuple[List[_Accepted], List[AttemptRecord]]:
        """
        Fetch candidates with bounded fan-out.

        Returns:
            Accepted datasets (primary first, then comparisons in candidate
            order) and the attempt trail
        """
        wanted = 1 + (self.max_comparison_sources if compare else 0)
        cancel = threading.Event()
        executor = ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="hybrid-fetch")
        pending: Dict[Future, int] = {}
        accepted: Dict[int, _Accepted] = {}
        attempts: Dict[int, AttemptRecord] = {}
        next_index = 0
        primary_index: Optional[int] = None
        deadline: Optional[float] = None

        def submit_more():
            nonlocal next_index
            while next_index < len(candidates) and len(pending) < self.max_parallel:
                if primary_index is not None and len(accepted) + len(pending) >= wanted:
                    break
                future = executor.submit(self._attempt, candidates[next_index], category, params, cancel)
                pending[future] = next_index
                next_index += 1

        try:
            submit_more()
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
                done, _ = wait(list(pending), timeout=timeout, return_when=FIRST_COMPLETED)
                if not done:
                    logger.info(f"Comparison window for {category} elapsed; proceeding with "
                                f"{len(accepted)} dataset(s)")
                    break

                for future in done:
                    index = pending.pop(future)
                    self._collect(candidates[index], index, future, accepted, attempts)

                if primary_index is None:
                    primary_index = self._first_in_order(len(candidates), accepted, attempts)
                    if primary_index is not None:
                        logger.info(f"Primary source for {category}: {candidates[primary_index].source_id}")
                        if wanted == 1:
                            break
                        deadline = time.monotonic() + self.comparison_window

                if primary_index is not None and len(accepted) >= wanted:
                    break
                submit_more()
        finally:
            cancel.set()
            for future, index in pending.items():
                future.cancel()
                attempts.setdefault(index, AttemptRecord(
                    source_id=candidates[index].source_id,
                    outcome="cancelled",
                    error_kind=FetchCancelled.kind,
                    detail="not needed after primary result",
                ))
            executor.shutdown(wait=False, cancel_futures=True)

        trail = [attempts[i] for i in sorted(attempts)]
        if primary_index is None:
            return [], trail

        others = [accepted[i] for i in sorted(accepted) if i != primary_index]
        return [accepted[primary_index]] + others[:wanted - 1], trail

    def _collect(self, candidate: Candidate, index: int, future: Future,
                 accepted: Dict[int, _Accepted], attempts: Dict[int, AttemptRecord]) -> None:
        try:
            result, outcome = future.result()
        except FetchError as e:
            logger.warning(f"Fetch from {candidate.source_id} failed ({e.kind}): {e.message}")
            attempts[index] = AttemptRecord(candidate.source_id, "failed", e.kind, e.message)
            return

        if not outcome.valid:
            types = sorted({i.type for i in outcome.high_issues})
            logger.warning(f"Discarding data from {candidate.source_id}: {', '.join(types)}")
            attempts[index] = AttemptRecord(candidate.source_id, "rejected", ValidationFailed.kind,
                                            ", ".join(types))
            return

        accepted[index] = _Accepted(index, candidate, result, outcome)
        attempts[index] = AttemptRecord(candidate.source_id, "success")

    @staticmethod
    def _first_in_order(count: int, accepted: Dict[int, _Accepted],
                        attempts: Dict[int, AttemptRecord]) -> Optional[int]:
        """Lowest accepted index, once every earlier candidate has been ruled out."""
        for index in range(count):
            if index in accepted:
                return index
            if index not in attempts:
                return None
        return None

    def _decide(self, category: str, compromised: bool, accepted: List[_Accepted],
                attempts: List[AttemptRecord]) -> ReconciledResult:
        primary = accepted[0]
        confidence = primary.result.reliability
        discrepancies: List[Discrepancy] = []
        conflicts: Dict[str, set] = {entry.candidate.source_id: set() for entry in accepted}

        for a, b in combinations(accepted, 2):
            found = self.comparator.compare(
                a.result.payload, b.result.payload, a.candidate.source_id, b.candidate.source_id
            )
            if found:
                confidence -= min(PAIR_PENALTY_CAP, len(found) * PAIR_DISCREPANCY_WEIGHT)
                conflicts[a.candidate.source_id].add(b.candidate.source_id)
                conflicts[b.candidate.source_id].add(a.candidate.source_id)
                discrepancies.extend(found)
            else:
                confidence += PAIR_AGREEMENT_BONUS
        confidence = clamp(confidence)

        chosen = primary
        switch = None
        if compromised and len(accepted) > SWITCH_MIN_CONFLICTS:
            government = next((e for e in accepted if e.candidate.descriptor.is_government), None)
            if government and len(conflicts[government.candidate.source_id]) >= SWITCH_MIN_CONFLICTS:
                others = [e for e in accepted if e is not government]
                chosen = min(others, key=lambda e: (-e.candidate.reliability, e.index))
                switch = SourceSwitch(government.candidate.source_id, chosen.candidate.source_id)
                logger.warning(
                    f"Government source {switch.from_source} conflicts with "
                    f"{len(conflicts[switch.from_source])} sources for {category}; "
                    f"using {switch.to_source}"
                )

        metadata = ValidationMetadata(
            sources_compared=[e.candidate.source_id for e in accepted],
            confidence_score=confidence,
            discrepancies=discrepancies,
            source_switch=switch,
            primary_source=primary.candidate.source_id,
            compromised_category=compromised,
        )
        logger.info(
            f"Reconciled {category} from {chosen.candidate.source_id} "
            f"(confidence {confidence:.2f}, {len(discrepancies)} discrepancies)"
        )
        return ReconciledResult(
            category=category,
            payload=chosen.result.payload.to_raw(),
            source_id=chosen.candidate.source_id,
            metadata=metadata,
            fetched_at=chosen.result.fetched_at,
            attempts=attempts,
            validation=chosen.outcome,
        )

    def _offline_fallback(self, category: str, compromised: bool,
                          attempts: List[AttemptRecord]) -> ReconciledResult:
        snapshot = self.cache.get(category, ignore_age=True)
        if snapshot is None:
            logger.error(f"All sources failed for {category} and no offline copy exists")
            raise AllSourcesExhausted(category, [a.to_dict() for a in attempts])

        now = datetime.now(timezone.utc)
        stale = snapshot.age(now) > self.cache.max_age
        cached_confidence = snapshot.metadata.get("confidence_score", 1.0)
        source_id = snapshot.metadata.get("source_id", OFFLINE_SOURCE_ID)
        logger.warning(
            f"All sources failed for {category}; serving offline copy from "
            f"{snapshot.stored_at.isoformat()}{' (stale)' if stale else ''}"
        )

        return ReconciledResult(
            category=category,
            payload=snapshot.payload,
            source_id=source_id,
            metadata=ValidationMetadata(
                sources_compared=[],
                confidence_score=clamp(cached_confidence * OFFLINE_CONFIDENCE_DISCOUNT),
                primary_source=source_id,
                compromised_category=compromised,
                stale=stale,
            ),
            fetched_at=snapshot.stored_at,
            offline=True,
            attempts=attempts,
        )
