"""
Progressive label loading by language priority.

Strategy for a batch of resource URIs:

1. Query labels in the first preferred language only.
2. Drop the resolved URIs and query the rest in the next language.
3. Once at most ``threshold`` URIs remain, or the language budget is used
   up, issue one query for every language and label type for whatever is
   left.

Single-language queries are cheap and usually resolve most of a batch in one
or two rounds; the all-languages query is a wide OPTIONAL join that should
only ever see the residue.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from .errors import OperationCancelled, TransportError
from .labels import (
    LanguagePreference,
    ResolvedLabel,
    ResourceKind,
    candidates_from_bindings,
    select_label_by_priority,
)
from .queries import build_labels_query
from .sparql import Endpoint, QueryExecutor, is_cancelled

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 5
DEFAULT_MAX_LANGUAGE_ITERATIONS = 5

OnResolved = Callable[[dict[str, ResolvedLabel]], None]


class ProgressiveLabelLoader:
    """Resolve display labels for batches of resources, one language at a time."""

    def __init__(
        self,
        executor: QueryExecutor,
        endpoint: Endpoint,
        prefs: LanguagePreference,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        max_language_iterations: int = DEFAULT_MAX_LANGUAGE_ITERATIONS,
    ):
        """Initialize the loader.

        Args:
            executor: Query executor.
            endpoint: Endpoint to query.
            prefs: Override language and configured language priorities.
            threshold: Switch to the all-languages query once this many or
                       fewer URIs remain unresolved.
            max_language_iterations: Maximum number of single-language rounds.
        """
        self.executor = executor
        self.endpoint = endpoint
        self.prefs = prefs
        self.threshold = threshold
        self.max_language_iterations = max_language_iterations

    def language_order(self) -> list[str]:
        """Languages to try, preferred first, limited to the iteration budget."""
        return self.prefs.effective()[: self.max_language_iterations]

    def _resolve(self, bindings: list, kind: ResourceKind | str) -> dict[str, ResolvedLabel]:
        resolved = {}
        for uri, candidates in candidates_from_bindings(bindings, "uri").items():
            best = select_label_by_priority(candidates, kind, self.prefs)
            if best is not None:
                resolved[uri] = ResolvedLabel.from_candidate(best)
        return resolved

    async def _query(self, query: str, kind: ResourceKind | str, cancel: Any) -> dict[str, ResolvedLabel]:
        results = await self.executor.execute(self.endpoint, query, retries=0, signal=cancel)
        return self._resolve(results.bindings, kind)

    async def query_labels_for_language(
        self,
        uris: Sequence[str],
        language: str,
        kind: ResourceKind | str = ResourceKind.CONCEPT,
        cancel: Any = None,
    ) -> dict[str, ResolvedLabel]:
        """Labels in exactly ``language``; a failed query resolves nothing."""
        if not uris:
            return {}
        try:
            return await self._query(build_labels_query(uris, language), kind, cancel)
        except TransportError as e:
            logger.warning("Single-language label query failed for %r: %s", language, e)
            return {}

    async def query_all_labels(
        self,
        uris: Sequence[str],
        kind: ResourceKind | str = ResourceKind.CONCEPT,
        cancel: Any = None,
    ) -> dict[str, ResolvedLabel]:
        """Labels of every type and language; a failed query resolves nothing."""
        if not uris:
            return {}
        try:
            return await self._query(build_labels_query(uris), kind, cancel)
        except TransportError as e:
            logger.warning("Full label query failed: %s", e)
            return {}

    async def load(
        self,
        uris: Sequence[str],
        kind: ResourceKind | str = ResourceKind.CONCEPT,
        on_resolved: OnResolved | None = None,
        cancel: Any = None,
    ) -> dict[str, ResolvedLabel]:
        """Resolve labels for ``uris`` progressively.

        Args:
            uris: Resource URIs. Duplicates are queried once.
            kind: Resource kind, selecting the label priority table.
            on_resolved: Called with each round's newly resolved labels.
            cancel: Optional cancellation token (anything with ``is_set()``),
                    checked before every query.

        Returns:
            Dict mapping URI to its resolved label. URIs without any label,
            and URIs of rounds skipped by cancellation, are absent.
        """
        resolved: dict[str, ResolvedLabel] = {}
        remaining = list(dict.fromkeys(uris))
        if not remaining:
            return resolved

        start = time.monotonic()
        languages = self.language_order()
        logger.debug(
            "Starting progressive label load: %d URIs, languages=%s, threshold=%d",
            len(remaining), ",".join(languages), self.threshold,
        )

        for language in languages:
            if len(remaining) <= self.threshold:
                break
            if is_cancelled(cancel):
                logger.debug("Progressive label load cancelled")
                return resolved

            try:
                round_result = await self.query_labels_for_language(remaining, language, kind, cancel)
            except OperationCancelled:
                logger.debug("Progressive label load cancelled")
                return resolved
            round_result = {uri: label for uri, label in round_result.items() if uri not in resolved}
            if round_result:
                resolved.update(round_result)
                remaining = [uri for uri in remaining if uri not in round_result]
                if on_resolved is not None:
                    on_resolved(round_result)
                logger.debug(
                    "Resolved %d labels with lang=%s, %d remaining",
                    len(round_result), language, len(remaining),
                )

        if remaining:
            if is_cancelled(cancel):
                logger.debug("Progressive label load cancelled before full query")
                return resolved
            try:
                final = await self.query_all_labels(remaining, kind, cancel)
            except OperationCancelled:
                logger.debug("Progressive label load cancelled during full query")
                return resolved
            final = {uri: label for uri, label in final.items() if uri in remaining}
            if final:
                resolved.update(final)
                if on_resolved is not None:
                    on_resolved(final)
            logger.debug("Full query resolved %d, %d unresolved", len(final), len(remaining) - len(final))

        logger.info(
            "Resolved %d/%d labels in %.0fms",
            len(resolved), len(dict.fromkeys(uris)), (time.monotonic() - start) * 1000,
        )
        return resolved
