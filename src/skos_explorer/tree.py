"""
Concept and collection tree nodes built from labelled query results.

The tree queries return one row per (resource, label) pair. Rows are grouped
per resource, one display label is picked with the label priority rules,
and nodes are ordered by notation, then label, then URI.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import OperationCancelled
from .labels import (
    LanguagePreference,
    ResourceKind,
    candidates_from_bindings,
    select_label_by_priority,
)
from .queries import split_page
from .sparql import Binding, Endpoint, QueryExecutor, binding_bool, binding_value, is_cancelled

logger = logging.getLogger(__name__)

# Boolean "has children" variable per resource kind
_CHILD_FLAGS = {
    ResourceKind.CONCEPT: "hasNarrower",
    ResourceKind.SCHEME: "hasNarrower",
    ResourceKind.COLLECTION: "hasChildCollections",
}


@dataclass(frozen=True)
class ConceptNode:
    uri: str
    label: str | None = None
    lang: str | None = None
    notation: str | None = None
    has_narrower: bool = False
    kind: ResourceKind = ResourceKind.CONCEPT

    @property
    def display(self) -> str:
        """Label for display, prefixed by the notation when there is one."""
        text = self.label or self.uri
        return f"{self.notation} {text}" if self.notation else text


@dataclass
class Page:
    nodes: list[ConceptNode] = field(default_factory=list)
    has_more: bool = False


def _pick_notation(notations: list[str]) -> str | None:
    if not notations:
        return None
    return min(notations, key=lambda n: (len(n), n))


def _sort_key(node: ConceptNode) -> tuple:
    return (
        node.notation is None,
        node.notation or "",
        (node.label or "").casefold(),
        node.uri,
    )


def nodes_from_bindings(
    rows: list[Binding],
    subject_var: str,
    kind: ResourceKind | str,
    prefs: LanguagePreference,
) -> list[ConceptNode]:
    """Group result rows into sorted tree nodes.

    Args:
        rows: Rows with ``?label ?labelLang ?labelType ?notation`` and a
              has-children boolean.
        subject_var: Variable holding the resource URI.
        kind: Resource kind, selecting the label priority table.
        prefs: Language preference.

    Returns:
        One node per resource.
    """
    kind = ResourceKind(kind)
    child_flag = _CHILD_FLAGS[kind]
    candidates = candidates_from_bindings(rows, subject_var)

    notations: dict[str, list[str]] = {}
    has_children: dict[str, bool] = {}
    for row in rows:
        uri = binding_value(row, subject_var)
        if uri is None:
            continue
        notation = binding_value(row, "notation")
        if notation:
            notations.setdefault(uri, []).append(notation)
        has_children[uri] = has_children.get(uri, False) or binding_bool(row, child_flag)

    nodes = []
    for uri, labels in candidates.items():
        best = select_label_by_priority(labels, kind, prefs)
        nodes.append(
            ConceptNode(
                uri=uri,
                label=best.value if best else None,
                lang=best.lang if best else None,
                notation=_pick_notation(notations.get(uri, [])),
                has_narrower=has_children.get(uri, False),
                kind=kind,
            )
        )
    nodes.sort(key=_sort_key)
    return nodes


async def load_page(
    executor: QueryExecutor,
    endpoint: Endpoint,
    query: str | None,
    limit: int,
    *,
    subject_var: str = "concept",
    kind: ResourceKind | str = ResourceKind.CONCEPT,
    prefs: LanguagePreference | None = None,
    cancel: Any = None,
) -> Page:
    """Run one page of a tree query built with ``limit``.

    The query asks for ``limit + 1`` resources ordered by URI; the extra
    resource only signals that another page exists and is not returned.
    A None query (unsupported by the endpoint) yields an empty page.
    """
    if query is None:
        logger.debug("Tree query not supported by %s, skipping", endpoint)
        return Page()
    if is_cancelled(cancel):
        raise OperationCancelled("Tree page load cancelled")

    results = await executor.execute(endpoint, query, signal=cancel)
    nodes = nodes_from_bindings(results.bindings, subject_var, kind, prefs or LanguagePreference())
    keep, has_more = split_page(sorted(node.uri for node in nodes), limit)
    kept = set(keep)
    return Page([node for node in nodes if node.uri in kept], has_more)
