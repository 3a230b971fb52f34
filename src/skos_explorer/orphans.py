"""
Orphan concept and collection detection.

An orphan is a concept (or collection) that cannot be reached from any
concept scheme through the relationships the endpoint supports. Two
algorithms are available for concepts:

- fast: one paginated ``FILTER NOT EXISTS`` query. Needs an endpoint that
  evaluates negation well, and at least one reachability relationship.
- slow: fetch every concept, then subtract the results of one paginated
  exclusion query per reachability relationship. Works everywhere, costs
  many round trips.

``find_orphan_concepts`` picks between them (``fast``, ``slow`` or ``auto``).
Progress is reported through a callback receiving immutable
``OrphanProgress`` snapshots.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .capabilities import Capabilities
from .errors import OperationCancelled, TransportError, UnsupportedCapabilityError
from .queries import (
    build_all_concepts_query,
    build_orphan_collections_query,
    build_orphan_exclusion_queries,
    build_single_orphan_query,
)
from .sparql import Endpoint, QueryExecutor, fetch_all_pages

logger = logging.getLogger(__name__)

PAGE_SIZE = 5000
SINGLE_QUERY_NAME = "single-query-orphan-detection"
STRATEGIES = ("fast", "slow", "auto")


class OrphanPhase(str, Enum):
    IDLE = "idle"
    FETCHING_ALL = "fetching-all"
    RUNNING_EXCLUSIONS = "running-exclusions"
    CALCULATING = "calculating"
    COMPLETE = "complete"


@dataclass(frozen=True)
class QueryMetric:
    """Outcome of one exclusion query. ``duration`` is in seconds."""

    name: str
    excluded_count: int
    cumulative_excluded: int
    remaining_after: int
    duration: float


@dataclass(frozen=True)
class OrphanProgress:
    phase: OrphanPhase = OrphanPhase.IDLE
    total_concepts: int = 0
    fetched_concepts: int = 0
    remaining_candidates: int = 0
    completed_queries: tuple[QueryMetric, ...] = ()
    skipped_queries: tuple[str, ...] = ()
    failed_queries: tuple[str, ...] = ()
    current_query_name: str | None = None


ProgressCallback = Callable[[OrphanProgress], None]
CollectionProgressCallback = Callable[[str, int], None]


class _Reporter:
    """Holds the latest snapshot and hands a fresh one to the callback."""

    def __init__(self, callback: ProgressCallback | None):
        self.callback = callback
        self.state = OrphanProgress()

    def update(self, **changes: Any) -> OrphanProgress:
        self.state = replace(self.state, **changes)
        if self.callback is not None:
            self.callback(self.state)
        return self.state


async def calculate_orphan_concepts_fast(
    executor: QueryExecutor,
    endpoint: Endpoint,
    caps: Capabilities,
    on_progress: ProgressCallback | None = None,
    cancel: Any = None,
    page_size: int = PAGE_SIZE,
) -> list[str]:
    """Find orphan concepts with a single FILTER NOT EXISTS query.

    Args:
        executor: Query executor.
        endpoint: Endpoint to query.
        caps: Endpoint capabilities.
        on_progress: Called with a snapshot after every page.
        cancel: Optional cancellation token, checked before every page.
        page_size: Rows per page.

    Returns:
        Sorted orphan concept URIs.

    Raises:
        UnsupportedCapabilityError: No reachability relationship is available.
        TransportError: A page query failed.
    """
    if build_single_orphan_query(caps, 1, 0) is None:
        raise UnsupportedCapabilityError(
            "Cannot build single orphan query: no scheme relationships available"
        )

    logger.info("Starting fast single-query orphan detection")
    total = caps.total_concepts or 0
    reporter = _Reporter(on_progress)
    reporter.update(
        phase=OrphanPhase.RUNNING_EXCLUSIONS,
        total_concepts=total,
        current_query_name=SINGLE_QUERY_NAME,
    )

    def page_done(found: int) -> None:
        reporter.update(fetched_concepts=found, remaining_candidates=found)

    start = time.monotonic()
    orphans = await fetch_all_pages(
        executor,
        endpoint,
        lambda limit, offset: build_single_orphan_query(caps, limit, offset),
        "concept",
        page_size,
        cancel=cancel,
        on_page=page_done,
    )
    duration = time.monotonic() - start

    logger.info("Fast orphan detection complete: %d orphans in %.1fs", len(orphans), duration)
    excluded = max(total - len(orphans), 0)
    reporter.update(
        phase=OrphanPhase.COMPLETE,
        fetched_concepts=len(orphans),
        remaining_candidates=len(orphans),
        completed_queries=(
            QueryMetric(SINGLE_QUERY_NAME, excluded, excluded, len(orphans), duration),
        ),
        current_query_name=None,
    )
    return sorted(orphans)


async def calculate_orphan_concepts(
    executor: QueryExecutor,
    endpoint: Endpoint,
    caps: Capabilities,
    on_progress: ProgressCallback | None = None,
    cancel: Any = None,
    page_size: int = PAGE_SIZE,
) -> list[str]:
    """Find orphan concepts by fetching all concepts and subtracting reachable ones.

    Exclusion queries run in a fixed order. Once no candidates remain the
    rest are skipped. A failing exclusion query is recorded in
    ``failed_queries`` and the calculation carries on without it, so the
    result may over-report orphans.

    Args:
        executor: Query executor.
        endpoint: Endpoint to query.
        caps: Endpoint capabilities.
        on_progress: Called with a snapshot at every step.
        cancel: Optional cancellation token, checked before every query.
        page_size: Rows per page.

    Returns:
        Sorted orphan concept URIs.

    Raises:
        TransportError: Fetching the full concept list failed.
    """
    reporter = _Reporter(on_progress)
    expected = caps.total_concepts or 0
    logger.info("Fetching all concepts (expected %d)...", expected)
    reporter.update(
        phase=OrphanPhase.FETCHING_ALL,
        total_concepts=expected,
        remaining_candidates=expected,
    )

    all_concepts = await fetch_all_pages(
        executor,
        endpoint,
        build_all_concepts_query,
        "concept",
        page_size,
        cancel=cancel,
        on_page=lambda fetched: reporter.update(fetched_concepts=fetched),
    )
    total = len(all_concepts)
    logger.info("Total concepts fetched: %d", total)

    names = [q.name for q in build_orphan_exclusion_queries(caps, page_size, 0)]
    logger.info("Running %d exclusion queries", len(names))
    reporter.update(
        phase=OrphanPhase.RUNNING_EXCLUSIONS,
        total_concepts=total,
        fetched_concepts=total,
        remaining_candidates=total,
    )

    known = set(all_concepts)
    candidates = set(known)
    excluded_total: set[str] = set()
    for name in names:
        if not candidates:
            logger.info("Query %r skipped (no remaining candidates)", name)
            reporter.update(skipped_queries=(*reporter.state.skipped_queries, name))
            continue

        reporter.update(current_query_name=name, remaining_candidates=len(candidates))
        start = time.monotonic()
        try:
            excluded = await fetch_all_pages(
                executor,
                endpoint,
                lambda limit, offset, name=name: _exclusion_query(caps, name, limit, offset),
                "concept",
                page_size,
                cancel=cancel,
            )
        except TransportError as e:
            logger.warning("Exclusion query %r failed, continuing without it: %s", name, e)
            reporter.update(
                failed_queries=(*reporter.state.failed_queries, name),
                current_query_name=None,
            )
            continue

        excluded_set = set(excluded)
        excluded_total |= excluded_set & known
        candidates -= excluded_set
        metric = QueryMetric(
            name=name,
            excluded_count=len(excluded_set),
            cumulative_excluded=len(excluded_total),
            remaining_after=len(candidates),
            duration=time.monotonic() - start,
        )
        percentage = len(excluded_set) / total * 100 if total else 0.0
        logger.info("Query %r excluded %d concepts (%.1f%%)", name, len(excluded_set), percentage)
        reporter.update(
            completed_queries=(*reporter.state.completed_queries, metric),
            remaining_candidates=len(candidates),
            current_query_name=None,
        )

    reporter.update(phase=OrphanPhase.CALCULATING, remaining_candidates=len(candidates))
    orphans = sorted(candidates)
    logger.info("Orphan concepts found: %d of %d", len(orphans), total)
    reporter.update(phase=OrphanPhase.COMPLETE, remaining_candidates=len(orphans))
    return orphans


def _exclusion_query(caps: Capabilities, name: str, limit: int, offset: int) -> str:
    for query in build_orphan_exclusion_queries(caps, limit, offset):
        if query.name == name:
            return query.query
    raise UnsupportedCapabilityError(f"Exclusion query {name!r} is not available")


async def calculate_orphan_collections(
    executor: QueryExecutor,
    endpoint: Endpoint,
    caps: Capabilities,
    on_progress: CollectionProgressCallback | None = None,
    cancel: Any = None,
    page_size: int = PAGE_SIZE,
) -> list[str]:
    """Find collections none of whose members belong to any scheme.

    Args:
        executor: Query executor.
        endpoint: Endpoint to query.
        caps: Endpoint capabilities.
        on_progress: Called as ``on_progress(phase, found)`` with phase
                     ``running`` after every page and ``complete`` at the end.
        cancel: Optional cancellation token, checked before every page.
        page_size: Rows per page.

    Returns:
        Sorted orphan collection URIs. Empty when no scheme relationship is
        available to test membership with.
    """
    logger.info("Starting orphan collection detection")
    if build_orphan_collections_query(caps, 1, 0) is None:
        logger.warning("Cannot build orphan collection query: no scheme relationships available")
        if on_progress is not None:
            on_progress("complete", 0)
        return []

    if on_progress is not None:
        on_progress("running", 0)
    start = time.monotonic()
    orphans = await fetch_all_pages(
        executor,
        endpoint,
        lambda limit, offset: build_orphan_collections_query(caps, limit, offset),
        "collection",
        page_size,
        cancel=cancel,
        on_page=(lambda found: on_progress("running", found)) if on_progress else None,
    )
    logger.info(
        "Orphan collection detection complete: %d found in %.1fs",
        len(orphans), time.monotonic() - start,
    )
    if on_progress is not None:
        on_progress("complete", len(orphans))
    return sorted(orphans)


async def find_orphan_concepts(
    executor: QueryExecutor,
    endpoint: Endpoint,
    caps: Capabilities,
    strategy: str = "auto",
    on_progress: ProgressCallback | None = None,
    cancel: Any = None,
    page_size: int = PAGE_SIZE,
) -> list[str]:
    """Find orphan concepts using the configured strategy.

    ``fast`` and ``slow`` run that method and propagate its failure.
    ``auto`` tries the fast method and, if it fails for any reason other than
    cancellation, runs the slow method once; a slow failure propagates.

    Raises:
        ValueError: Unknown strategy.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown orphan strategy {strategy!r}, expected one of {', '.join(STRATEGIES)}")

    if strategy == "fast":
        return await calculate_orphan_concepts_fast(
            executor, endpoint, caps, on_progress, cancel, page_size
        )
    if strategy == "slow":
        return await calculate_orphan_concepts(
            executor, endpoint, caps, on_progress, cancel, page_size
        )

    try:
        return await calculate_orphan_concepts_fast(
            executor, endpoint, caps, on_progress, cancel, page_size
        )
    except OperationCancelled:
        raise
    except Exception as e:
        logger.warning("Fast orphan detection failed, falling back to slow method: %s", e)
    return await calculate_orphan_concepts(
        executor, endpoint, caps, on_progress, cancel, page_size
    )
