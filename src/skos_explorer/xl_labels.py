"""
SKOS-XL extended labels.

SKOS-XL labels are resources of their own carrying a ``skosxl:literalForm``.
They are loaded per resource and turned into ordinary ``LabelCandidate``s
with the XL label types, so the label resolver needs no XL-specific logic.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import TransportError
from .labels import LabelCandidate, LabelType
from .queries import iri, with_prefixes
from .sparql import Endpoint, QueryExecutor, binding_value

logger = logging.getLogger(__name__)

# ?labelType value -> candidate type
_XL_TYPES = {
    "prefLabel": LabelType.XL_PREF_LABEL,
    "altLabel": LabelType.XL_ALT_LABEL,
    "hiddenLabel": LabelType.XL_HIDDEN_LABEL,
}


@dataclass(frozen=True)
class XLLabel:
    uri: str
    literal_form: LabelCandidate


def build_xl_labels_query(uri: str) -> str:
    resource = iri(uri)
    branches = " UNION ".join(
        f"""{{
    {resource} skosxl:{kind} ?xlLabel .
    ?xlLabel skosxl:literalForm ?literalForm .
    BIND("{kind}" AS ?labelType)
  }}"""
        for kind in _XL_TYPES
    )
    return with_prefixes(f"""
SELECT ?xlLabel ?literalForm ?literalLang ?labelType
WHERE {{
  {branches}
  BIND(LANG(?literalForm) AS ?literalLang)
}}
""")


async def load_xl_labels(executor: QueryExecutor, endpoint: Endpoint, uri: str) -> list[XLLabel]:
    """Load the SKOS-XL labels of one resource.

    Labels are deduplicated by XL label URI. Endpoints without SKOS-XL
    support commonly reject the query, so failures return an empty list.
    """
    try:
        results = await executor.execute(endpoint, build_xl_labels_query(uri), retries=0)
    except TransportError as e:
        logger.debug("SKOS-XL labels not available for %s: %s", uri, e)
        return []

    labels = []
    seen: set[str] = set()
    for row in results.bindings:
        literal = binding_value(row, "literalForm")
        label_type = _XL_TYPES.get(binding_value(row, "labelType") or "")
        if literal is None or label_type is None:
            continue
        lang = binding_value(row, "literalLang") or None
        xl_uri = binding_value(row, "xlLabel") or ""
        key = xl_uri or f"{label_type.value}:{literal}:{lang or ''}"
        if key in seen:
            continue
        seen.add(key)
        labels.append(XLLabel(xl_uri, LabelCandidate(literal, lang, label_type)))

    logger.debug("Loaded %d SKOS-XL labels for %s", len(labels), uri)
    return labels


def xl_candidates(xl_labels: list[XLLabel]) -> list[LabelCandidate]:
    """Literal forms of XL labels, ready to mix with plain label candidates."""
    return [xl.literal_form for xl in xl_labels]
