"""
Endpoint capability model.

A ``Capabilities`` value records which SKOS relationship predicates an
endpoint is known to populate, plus the language information gathered when
the endpoint was analysed. It is produced once per analysis (see
``skos_explorer.analysis``) and only ever read by the query builders and the
orphan engine.

Example:
    >>> caps = Capabilities.from_dict({"hasInScheme": True, "hasBroader": True})
    >>> caps.has_in_scheme, caps.has_top_capability
    (True, False)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# (attribute, analysis JSON key) for every relationship flag
RELATIONSHIP_FLAGS: tuple[tuple[str, str], ...] = (
    ("has_in_scheme", "hasInScheme"),
    ("has_top_concept_of", "hasTopConceptOf"),
    ("has_has_top_concept", "hasHasTopConcept"),
    ("has_broader", "hasBroader"),
    ("has_narrower", "hasNarrower"),
    ("has_broader_transitive", "hasBroaderTransitive"),
    ("has_narrower_transitive", "hasNarrowerTransitive"),
)


@dataclass(frozen=True)
class Capabilities:
    """Relationship and language capabilities of one SPARQL endpoint."""

    has_in_scheme: bool = False
    has_top_concept_of: bool = False
    has_has_top_concept: bool = False
    has_broader: bool = False
    has_narrower: bool = False
    has_broader_transitive: bool = False
    has_narrower_transitive: bool = False
    languages: tuple[tuple[str, int], ...] = ()
    total_concepts: int | None = None
    language_priorities: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_top_capability(self) -> bool:
        """True if top concepts can be found in either direction."""
        return self.has_top_concept_of or self.has_has_top_concept

    def relationship_count(self) -> int:
        """Number of relationship flags that are set."""
        return sum(1 for attr, _ in RELATIONSHIP_FLAGS if getattr(self, attr))

    def relationships(self) -> dict[str, bool]:
        """Relationship flags keyed by their analysis JSON name."""
        return {key: getattr(self, attr) for attr, key in RELATIONSHIP_FLAGS}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Capabilities:
        """Create capabilities from an analysis dict.

        Accepts both the camelCase keys of the endpoint analysis JSON and the
        snake_case attribute names. Relationship flags may also be nested
        under a ``relationships`` key.

        Args:
            data: Analysis dictionary, or None for "nothing known".

        Returns:
            Capabilities instance. Unknown keys are ignored.
        """
        if not data:
            return cls()

        flat = dict(data)
        nested = flat.pop("relationships", None)
        if isinstance(nested, dict):
            flat.update(nested)

        kwargs: dict[str, Any] = {}
        for attr, key in RELATIONSHIP_FLAGS:
            value = flat.get(key, flat.get(attr))
            if value is not None:
                kwargs[attr] = bool(value)

        languages = flat.get("languages") or []
        parsed_langs = []
        for item in languages:
            if isinstance(item, dict):
                lang = item.get("lang")
                if lang:
                    parsed_langs.append((str(lang), int(item.get("count", 0))))
            else:
                lang, count = item
                parsed_langs.append((str(lang), int(count)))
        kwargs["languages"] = tuple(parsed_langs)

        total = flat.get("totalConcepts", flat.get("total_concepts"))
        kwargs["total_concepts"] = int(total) if total is not None else None

        priorities = flat.get("languagePriorities", flat.get("language_priorities")) or []
        kwargs["language_priorities"] = tuple(str(p) for p in priorities)

        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase analysis JSON shape."""
        return {
            "relationships": self.relationships(),
            "languages": [{"lang": lang, "count": count} for lang, count in self.languages],
            "totalConcepts": self.total_concepts,
            "languagePriorities": list(self.language_priorities),
        }
