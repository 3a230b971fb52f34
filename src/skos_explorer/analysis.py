"""
Endpoint analysis: detect which SKOS relationships and languages an
endpoint populates, producing the ``Capabilities`` the query builders need.

Each step degrades independently: a failed step leaves its part of the
capabilities unknown (False / None / empty) instead of failing the analysis.
"""
from __future__ import annotations

import logging

from .capabilities import RELATIONSHIP_FLAGS, Capabilities
from .errors import TransportError
from .queries import build_relationship_detection_query, with_prefixes
from .sparql import Endpoint, QueryExecutor, binding_bool, binding_value

logger = logging.getLogger(__name__)

COUNT_CONCEPTS_QUERY = with_prefixes("""
    SELECT (COUNT(DISTINCT ?concept) AS ?count)
    WHERE {
      ?concept a skos:Concept .
    }
""")

DETECT_LANGUAGES_QUERY = with_prefixes("""
    SELECT ?lang (COUNT(*) AS ?count)
    WHERE {
      ?concept a skos:Concept .
      { ?concept skos:prefLabel ?label }
      UNION
      { ?concept skosxl:prefLabel/skosxl:literalForm ?label }
      FILTER(LANG(?label) != "")
      BIND(LANG(?label) AS ?lang)
    }
    GROUP BY ?lang
    ORDER BY DESC(?count)
""")


async def detect_relationships(executor: QueryExecutor, endpoint: Endpoint) -> dict[str, bool]:
    """Detect relationship capabilities with one EXISTS query.

    Returns:
        Dict keyed by attribute name (``has_in_scheme`` ...). Endpoints
        returning ``1``/``0`` instead of ``true``/``false`` are handled.
    """
    results = await executor.execute(endpoint, build_relationship_detection_query(), retries=1)
    row = results.bindings[0] if results.bindings else {}
    return {attr: binding_bool(row, key) for attr, key in RELATIONSHIP_FLAGS}


async def count_concepts(executor: QueryExecutor, endpoint: Endpoint) -> int:
    results = await executor.execute(endpoint, COUNT_CONCEPTS_QUERY, retries=1)
    if not results.bindings:
        return 0
    return int(binding_value(results.bindings[0], "count") or 0)


async def detect_languages(executor: QueryExecutor, endpoint: Endpoint) -> list[tuple[str, int]]:
    """Languages of concept preferred labels, most frequent first."""
    results = await executor.execute(endpoint, DETECT_LANGUAGES_QUERY, retries=1)
    languages = []
    for row in results.bindings:
        lang = binding_value(row, "lang")
        if lang:
            languages.append((lang, int(binding_value(row, "count") or 0)))
    languages.sort(key=lambda item: (-item[1], item[0]))
    return languages


def default_language_priorities(languages: list[tuple[str, int]]) -> list[str]:
    """Alphabetical language list with English first when present."""
    tags = sorted({lang for lang, _ in languages})
    if "en" in tags:
        tags.remove("en")
        tags.insert(0, "en")
    return tags


async def analyze_endpoint(executor: QueryExecutor, endpoint: Endpoint) -> Capabilities:
    """Run the full analysis and combine the results.

    Args:
        executor: Query executor.
        endpoint: Endpoint to analyse.

    Returns:
        Capabilities. Steps that failed contribute nothing.
    """
    logger.info("Analyzing endpoint %s", endpoint)

    total: int | None = None
    try:
        total = await count_concepts(executor, endpoint)
        logger.info("(1/3) Concepts: %d", total)
    except TransportError as e:
        logger.warning("(1/3) Failed to count concepts: %s", e)

    relationships: dict[str, bool] = {}
    try:
        relationships = await detect_relationships(executor, endpoint)
        logger.info("(2/3) Relationships: %d/7 available", sum(relationships.values()))
    except TransportError as e:
        logger.warning("(2/3) Failed to detect relationships: %s", e)

    languages: list[tuple[str, int]] = []
    try:
        languages = await detect_languages(executor, endpoint)
        logger.info("(3/3) Languages: found %d", len(languages))
    except TransportError as e:
        logger.warning("(3/3) Failed to detect languages: %s", e)

    return Capabilities(
        **relationships,
        languages=tuple(languages),
        total_concepts=total,
        language_priorities=tuple(default_language_priorities(languages)),
    )
