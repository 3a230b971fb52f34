"""
Capability-aware SPARQL query builders.

Every builder whose shape depends on the endpoint's relationship
capabilities assembles an ordered list of ``QueryFragment``s, keeps the ones
whose ``requires`` predicate holds for the given ``Capabilities``, and joins
them with ``UNION``. When no fragment is active the builder returns None:
callers must skip the query rather than run an empty pattern.

Paginated builders request ``limit + 1`` rows; use ``split_page`` to drop
the extra row and learn whether another page exists.

Example:
    >>> caps = Capabilities(has_in_scheme=True)
    >>> build_single_orphan_query(caps, 100, 0) is not None
    True
    >>> build_single_orphan_query(Capabilities(), 100, 0) is None
    True
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from .capabilities import RELATIONSHIP_FLAGS, Capabilities
from .labels import LabelType

T = TypeVar("T")

SPARQL_PREFIXES = """\
PREFIX skos: <http://www.w3.org/2004/02/skos/core#>
PREFIX skosxl: <http://www.w3.org/2008/05/skos-xl#>
PREFIX dct: <http://purl.org/dc/terms/>
PREFIX dc: <http://purl.org/dc/elements/1.1/>
PREFIX rdfs: <http://www.w3.org/2000/01/rdf-schema#>
PREFIX rdf: <http://www.w3.org/1999/02/22-rdf-syntax-ns#>
PREFIX owl: <http://www.w3.org/2002/07/owl#>"""


def with_prefixes(query: str) -> str:
    """Prepend the standard prefix block unless the query already has one."""
    body = textwrap.dedent(query).strip()
    if body.upper().startswith("PREFIX"):
        return body
    return f"{SPARQL_PREFIXES}\n\n{body}\n"


_IRI_FORBIDDEN = set('<>"{}|^`\\')


def _escape_iri_char(char: str) -> str:
    if char in _IRI_FORBIDDEN or ord(char) <= 0x20:
        return "".join(f"%{byte:02X}" for byte in char.encode("utf-8"))
    return char


def iri(uri: str) -> str:
    """Format a URI as a SPARQL IRI reference.

    Only characters an IRIREF cannot contain are percent-encoded; non-ASCII
    characters are kept as they are.
    """
    return "<" + "".join(_escape_iri_char(c) for c in uri) + ">"


def split_page(rows: Sequence[T], limit: int) -> tuple[list[T], bool]:
    """Split a ``limit + 1`` result into the page rows and a has-more flag."""
    return list(rows[:limit]), len(rows) > limit


def _page(limit: int, offset: int) -> str:
    return f"LIMIT {limit + 1}\nOFFSET {offset}"


# =============================================================================
# Fragments
# =============================================================================


@dataclass(frozen=True)
class QueryFragment:
    """A graph pattern that is only valid when ``requires(caps)`` holds."""

    name: str
    requires: Callable[[Capabilities], bool]
    pattern: str


@dataclass(frozen=True)
class NamedQuery:
    name: str
    query: str


def active_fragments(
    fragments: Sequence[QueryFragment], caps: Capabilities
) -> list[QueryFragment]:
    """Fragments whose capability requirement holds, in declared order."""
    return [f for f in fragments if f.requires(caps)]


def union_of(
    fragments: Sequence[QueryFragment], caps: Capabilities, separator: str = "\n    UNION\n    "
) -> str | None:
    """Join the active fragments with UNION, None if none is active."""
    active = active_fragments(fragments, caps)
    if not active:
        return None
    return separator.join(f"{{ {f.pattern} }}" for f in active)


def needs(*flags: str) -> Callable[[Capabilities], bool]:
    """Requirement: every named capability flag is set."""
    return lambda caps: all(getattr(caps, flag) for flag in flags)


def needs_path(top_flag: str, flag: str, transitive_flag: str) -> Callable[[Capabilities], bool]:
    """Requirement for a ``prop+`` path: only when the transitive form is absent."""
    return lambda caps: (
        getattr(caps, top_flag) and getattr(caps, flag) and not getattr(caps, transitive_flag)
    )


# =============================================================================
# Shared clauses
# =============================================================================

# (label type, predicate path) in priority order
LABEL_PREDICATES: tuple[tuple[LabelType, str], ...] = (
    (LabelType.PREF_LABEL, "skos:prefLabel"),
    (LabelType.XL_PREF_LABEL, "skosxl:prefLabel/skosxl:literalForm"),
    (LabelType.DCT_TITLE, "dct:title"),
    (LabelType.DC_TITLE, "dc:title"),
    (LabelType.RDFS_LABEL, "rdfs:label"),
)


def label_union(var: str) -> str:
    """UNION of every label predicate, each binding ``?label`` and ``?labelType``."""
    branches = [
        f'{{\n      {var} {path} ?label .\n      BIND("{label_type.value}" AS ?labelType)\n    }}'
        for label_type, path in LABEL_PREDICATES
    ]
    return " UNION ".join(branches)


def optional_label_clause(var: str) -> str:
    return f"""OPTIONAL {{
    {label_union(var)}
    BIND(LANG(?label) AS ?labelLang)
  }}
  OPTIONAL {{ {var} skos:notation ?notation }}"""


def has_narrower_binding(caps: Capabilities, var: str = "?concept") -> str:
    """``BIND(EXISTS ...)`` for "has children", gated on broader/narrower."""
    fragments = (
        QueryFragment("broader", needs("has_broader"), f"[] skos:broader {var}"),
        QueryFragment("narrower", needs("has_narrower"), f"{var} skos:narrower []"),
    )
    pattern = union_of(fragments, caps, " UNION ")
    if pattern is None:
        return "BIND(false AS ?hasNarrower)"
    return f"BIND(EXISTS {{ {pattern} }} AS ?hasNarrower)"


def membership_fragments(caps: Capabilities, scheme: str) -> list[QueryFragment]:
    """Ways a ``?concept`` can belong to ``scheme`` (an IRI or a variable).

    Hierarchical membership goes through a top concept and prefers
    ``skos:broaderTransitive`` over the ``skos:broader+`` path.
    """
    top_fragments = (
        QueryFragment("topConceptOf", needs("has_top_concept_of"), f"?top skos:topConceptOf {scheme} ."),
        QueryFragment("hasTopConcept", needs("has_has_top_concept"), f"{scheme} skos:hasTopConcept ?top ."),
    )
    top_pattern = union_of(top_fragments, caps, " UNION ") or ""
    return [
        QueryFragment("inScheme", needs("has_in_scheme"), f"?concept skos:inScheme {scheme} ."),
        QueryFragment("topConceptOf", needs("has_top_concept_of"), f"?concept skos:topConceptOf {scheme} ."),
        QueryFragment("hasTopConcept", needs("has_has_top_concept"), f"{scheme} skos:hasTopConcept ?concept ."),
        QueryFragment(
            "broaderTransitive",
            lambda c: c.has_top_capability and c.has_broader_transitive,
            f"?concept skos:broaderTransitive ?top . {top_pattern}",
        ),
        QueryFragment(
            "broader-path",
            lambda c: c.has_top_capability and c.has_broader and not c.has_broader_transitive,
            f"?concept skos:broader+ ?top . {top_pattern}",
        ),
    ]


# Reachability from any scheme, in the order exclusion queries run
ORPHAN_REACHABILITY: tuple[QueryFragment, ...] = (
    QueryFragment("inScheme", needs("has_in_scheme"), "?concept skos:inScheme ?scheme ."),
    QueryFragment("topConceptOf", needs("has_top_concept_of"), "?concept skos:topConceptOf ?scheme ."),
    QueryFragment("hasTopConcept", needs("has_has_top_concept"), "?scheme skos:hasTopConcept ?concept ."),
    QueryFragment(
        "hasTopConcept-narrowerTransitive",
        needs("has_has_top_concept", "has_narrower_transitive"),
        "?scheme skos:hasTopConcept ?top . ?top skos:narrowerTransitive ?concept .",
    ),
    QueryFragment(
        "topConceptOf-narrowerTransitive",
        needs("has_top_concept_of", "has_narrower_transitive"),
        "?top skos:topConceptOf ?scheme . ?top skos:narrowerTransitive ?concept .",
    ),
    QueryFragment(
        "hasTopConcept-broaderTransitive",
        needs("has_has_top_concept", "has_broader_transitive"),
        "?scheme skos:hasTopConcept ?top . ?concept skos:broaderTransitive ?top .",
    ),
    QueryFragment(
        "topConceptOf-broaderTransitive",
        needs("has_top_concept_of", "has_broader_transitive"),
        "?top skos:topConceptOf ?scheme . ?concept skos:broaderTransitive ?top .",
    ),
    QueryFragment(
        "hasTopConcept-narrower-path",
        needs_path("has_has_top_concept", "has_narrower", "has_narrower_transitive"),
        "?scheme skos:hasTopConcept ?top . ?top skos:narrower+ ?concept .",
    ),
    QueryFragment(
        "topConceptOf-narrower-path",
        needs_path("has_top_concept_of", "has_narrower", "has_narrower_transitive"),
        "?top skos:topConceptOf ?scheme . ?top skos:narrower+ ?concept .",
    ),
    QueryFragment(
        "hasTopConcept-broader-path",
        needs_path("has_has_top_concept", "has_broader", "has_broader_transitive"),
        "?scheme skos:hasTopConcept ?top . ?concept skos:broader+ ?top .",
    ),
    QueryFragment(
        "topConceptOf-broader-path",
        needs_path("has_top_concept_of", "has_broader", "has_broader_transitive"),
        "?top skos:topConceptOf ?scheme . ?concept skos:broader+ ?top .",
    ),
)


# =============================================================================
# Concept tree
# =============================================================================


def _concept_page_query(caps: Capabilities, union: str, limit: int, offset: int) -> str:
    return with_prefixes(f"""
SELECT ?concept ?label ?labelLang ?labelType ?notation ?hasNarrower
WHERE {{
  {{
    SELECT DISTINCT ?concept
    WHERE {{
      ?concept a skos:Concept .
      {union}
    }}
    ORDER BY ?concept
    {_page(limit, offset)}
  }}
  {has_narrower_binding(caps)}
  {optional_label_clause("?concept")}
}}
ORDER BY ?concept
""")


def build_top_concepts_query(
    caps: Capabilities, scheme: str, limit: int, offset: int = 0
) -> str | None:
    """Top concepts of a scheme, with labels, notation and a has-children flag.

    Uses explicit ``topConceptOf`` / ``hasTopConcept`` links, plus in-scheme
    concepts without any broader concept as a fallback.
    """
    s = iri(scheme)
    fragments = (
        QueryFragment("topConceptOf", needs("has_top_concept_of"), f"?concept skos:topConceptOf {s} ."),
        QueryFragment("hasTopConcept", needs("has_has_top_concept"), f"{s} skos:hasTopConcept ?concept ."),
        QueryFragment(
            "inScheme-without-broader",
            needs("has_in_scheme"),
            f"?concept skos:inScheme {s} . "
            "FILTER NOT EXISTS { ?concept skos:broader ?broader } "
            "FILTER NOT EXISTS { ?parent skos:narrower ?concept }",
        ),
    )
    union = union_of(fragments, caps)
    if union is None:
        return None
    return _concept_page_query(caps, union, limit, offset)


def build_explicit_top_concepts_query(
    caps: Capabilities, scheme: str, limit: int, offset: int = 0
) -> str | None:
    """Top concepts declared with ``topConceptOf`` / ``hasTopConcept`` only."""
    s = iri(scheme)
    fragments = (
        QueryFragment("topConceptOf", needs("has_top_concept_of"), f"?concept skos:topConceptOf {s} ."),
        QueryFragment("hasTopConcept", needs("has_has_top_concept"), f"{s} skos:hasTopConcept ?concept ."),
    )
    union = union_of(fragments, caps)
    if union is None:
        return None
    return _concept_page_query(caps, union, limit, offset)


def build_children_query(
    caps: Capabilities, parent: str, limit: int, offset: int = 0
) -> str | None:
    """Narrower concepts of ``parent`` via ``skos:broader`` or ``skos:narrower``."""
    p = iri(parent)
    fragments = (
        QueryFragment("broader", needs("has_broader"), f"?concept skos:broader {p} ."),
        QueryFragment("narrower", needs("has_narrower"), f"{p} skos:narrower ?concept ."),
    )
    union = union_of(fragments, caps)
    if union is None:
        return None
    return _concept_page_query(caps, union, limit, offset)


def build_ancestors_query(caps: Capabilities, concept: str) -> str | None:
    """All ancestors of a concept, for breadcrumbs."""
    c = iri(concept)
    fragments = (
        QueryFragment("broaderTransitive", needs("has_broader_transitive"), f"{c} skos:broaderTransitive ?ancestor ."),
        QueryFragment(
            "broader-path",
            lambda caps: caps.has_broader and not caps.has_broader_transitive,
            f"{c} skos:broader+ ?ancestor .",
        ),
        QueryFragment(
            "narrowerTransitive", needs("has_narrower_transitive"), f"?ancestor skos:narrowerTransitive {c} ."
        ),
        QueryFragment(
            "narrower-path",
            lambda caps: caps.has_narrower and not caps.has_narrower_transitive,
            f"?ancestor skos:narrower+ {c} .",
        ),
    )
    union = union_of(fragments, caps)
    if union is None:
        return None
    return with_prefixes(f"""
SELECT DISTINCT ?ancestor
WHERE {{
  {union}
  FILTER(?ancestor != {c})
}}
ORDER BY ?ancestor
""")


def build_scheme_concept_count_query(caps: Capabilities, scheme: str) -> str | None:
    """Number of concepts belonging to a scheme by any supported path."""
    union = union_of(membership_fragments(caps, iri(scheme)), caps)
    if union is None:
        return None
    return with_prefixes(f"""
SELECT (COUNT(DISTINCT ?concept) AS ?count)
WHERE {{
  ?concept a skos:Concept .
  {union}
}}
""")


def build_all_concepts_query(limit: int, offset: int = 0) -> str:
    return with_prefixes(f"""
SELECT DISTINCT ?concept
WHERE {{
  ?concept a skos:Concept .
}}
ORDER BY ?concept
{_page(limit, offset)}
""")


# =============================================================================
# Collections
# =============================================================================

_HAS_PARENT_COLLECTION = """BIND(EXISTS {
    ?parentCol a skos:Collection .
    ?parentCol skos:member ?collection .
  } AS ?hasParentCollection)"""

_HAS_CHILD_COLLECTIONS = """BIND(EXISTS {
    ?collection skos:member ?childCol .
    ?childCol a skos:Collection .
  } AS ?hasChildCollections)"""


def build_collections_query(caps: Capabilities, scheme: str) -> str | None:
    """Collections with at least one member concept in ``scheme``."""
    union = union_of(membership_fragments(caps, iri(scheme)), caps)
    if union is None:
        return None
    return with_prefixes(f"""
SELECT DISTINCT ?collection ?label ?labelLang ?labelType ?notation ?hasParentCollection ?hasChildCollections
WHERE {{
  ?collection a skos:Collection .
  ?collection skos:member ?concept .
  {union}
  {_HAS_PARENT_COLLECTION}
  {_HAS_CHILD_COLLECTIONS}
  {optional_label_clause("?collection")}
}}
ORDER BY ?collection
""")


def build_child_collections_query(parent: str) -> str:
    """Collections that are members of ``parent``."""
    return with_prefixes(f"""
SELECT DISTINCT ?collection ?label ?labelLang ?labelType ?notation ?hasChildCollections
WHERE {{
  {iri(parent)} skos:member ?collection .
  ?collection a skos:Collection .
  {_HAS_CHILD_COLLECTIONS}
  {optional_label_clause("?collection")}
}}
ORDER BY ?collection
""")


def build_all_collections_query(limit: int, offset: int = 0) -> str:
    """Top-level collections of the whole endpoint, paginated."""
    return with_prefixes(f"""
SELECT ?collection ?label ?labelLang ?labelType ?notation ?hasChildCollections
WHERE {{
  {{
    SELECT DISTINCT ?collection
    WHERE {{
      ?collection a skos:Collection .
      FILTER NOT EXISTS {{
        ?parentCol a skos:Collection .
        ?parentCol skos:member ?collection .
      }}
    }}
    ORDER BY ?collection
    {_page(limit, offset)}
  }}
  {_HAS_CHILD_COLLECTIONS}
  {optional_label_clause("?collection")}
}}
ORDER BY ?collection
""")


# =============================================================================
# Labels
# =============================================================================


def build_labels_query(uris: Sequence[str], language: str | None = None) -> str:
    """Labels of every type for a batch of resources.

    With ``language`` only labels in exactly that language are returned and
    resources without one produce no rows. Without it the label clause is
    OPTIONAL and every language and type comes back.
    """
    values = " ".join(iri(uri) for uri in uris)
    if language is not None:
        return with_prefixes(f"""
SELECT ?uri ?label ?labelLang ?labelType
WHERE {{
  VALUES ?uri {{ {values} }}
  {label_union("?uri")}
  FILTER(LANG(?label) = {json.dumps(language)})
  BIND(LANG(?label) AS ?labelLang)
}}
""")
    return with_prefixes(f"""
SELECT ?uri ?label ?labelLang ?labelType
WHERE {{
  VALUES ?uri {{ {values} }}
  OPTIONAL {{
    {label_union("?uri")}
    BIND(LANG(?label) AS ?labelLang)
  }}
}}
""")


# =============================================================================
# Orphans
# =============================================================================


def build_orphan_exclusion_queries(
    caps: Capabilities, limit: int, offset: int = 0
) -> list[NamedQuery]:
    """One paginated "reachable via X" query per active reachability fragment."""
    return [
        NamedQuery(
            fragment.name,
            with_prefixes(f"""
SELECT DISTINCT ?concept
WHERE {{
  ?concept a skos:Concept .
  {fragment.pattern}
}}
ORDER BY ?concept
{_page(limit, offset)}
"""),
        )
        for fragment in active_fragments(ORPHAN_REACHABILITY, caps)
    ]


def build_single_orphan_query(caps: Capabilities, limit: int, offset: int = 0) -> str | None:
    """Concepts not reachable from any scheme, as one FILTER NOT EXISTS query."""
    union = union_of(ORPHAN_REACHABILITY, caps, "\n      UNION\n      ")
    if union is None:
        return None
    return with_prefixes(f"""
SELECT DISTINCT ?concept
WHERE {{
  ?concept a skos:Concept .
  FILTER NOT EXISTS {{
      {union}
  }}
}}
ORDER BY ?concept
{_page(limit, offset)}
""")


def build_orphan_collections_query(
    caps: Capabilities, limit: int, offset: int = 0
) -> str | None:
    """Collections none of whose members belongs to any scheme."""
    union = union_of(membership_fragments(caps, "?scheme"), caps, "\n      UNION\n      ")
    if union is None:
        return None
    return with_prefixes(f"""
SELECT DISTINCT ?collection
WHERE {{
  ?collection a skos:Collection .
  FILTER NOT EXISTS {{
      ?collection skos:member ?concept .
      {union}
  }}
}}
ORDER BY ?collection
{_page(limit, offset)}
""")


# =============================================================================
# Endpoint analysis
# =============================================================================

_RELATIONSHIP_PATTERNS = {
    "hasInScheme": "?c a skos:Concept . ?c skos:inScheme ?x",
    "hasTopConceptOf": "?c a skos:Concept . ?c skos:topConceptOf ?x",
    "hasHasTopConcept": "?s skos:hasTopConcept ?x",
    "hasBroader": "?c a skos:Concept . ?c skos:broader ?x",
    "hasNarrower": "?c a skos:Concept . ?c skos:narrower ?x",
    "hasBroaderTransitive": "?c a skos:Concept . ?c skos:broaderTransitive ?x",
    "hasNarrowerTransitive": "?c a skos:Concept . ?c skos:narrowerTransitive ?x",
}


def build_relationship_detection_query() -> str:
    """One row of EXISTS booleans, one per relationship capability."""
    projections = "\n  ".join(
        f"(EXISTS {{ {_RELATIONSHIP_PATTERNS[key]} }} AS ?{key})" for _, key in RELATIONSHIP_FLAGS
    )
    return with_prefixes(f"""
SELECT
  {projections}
WHERE {{}}
""")
