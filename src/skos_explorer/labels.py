"""
Label resolution for SKOS resources.

A resource usually carries many competing labels: several predicates
(``skos:prefLabel``, SKOS-XL literal forms, ``dct:title``, ``rdfs:label`` ...)
in several languages. The functions here pick one display label and order
the full set, using a per-resource-kind type priority table and a language
preference (an optional override language followed by the configured
priority list).

Nothing here ever invents label text: the result is always one of the
candidates passed in, or None for an empty list.

Example:
    >>> prefs = LanguagePreference("de", ("en",))
    >>> select_label([LabelCandidate("Dog", "en"), LabelCandidate("Hund", "de")], prefs)
    LabelCandidate(value='Hund', lang='de', type=<LabelType.PREF_LABEL: 'prefLabel'>)
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sparql import Binding


class LabelType(str, Enum):
    """Label source, as bound to ``?labelType`` by the label queries."""

    PREF_LABEL = "prefLabel"
    XL_PREF_LABEL = "xlPrefLabel"
    ALT_LABEL = "altLabel"
    XL_ALT_LABEL = "xlAltLabel"
    HIDDEN_LABEL = "hiddenLabel"
    XL_HIDDEN_LABEL = "xlHiddenLabel"
    DCT_TITLE = "dctTitle"
    DC_TITLE = "dcTitle"
    RDFS_LABEL = "rdfsLabel"

    @classmethod
    def parse(cls, value: str | None) -> LabelType | None:
        """Parse a bound label type string, None if unknown."""
        if not value:
            return None
        if value == "title":
            # dct:title is sometimes bound as plain "title"
            return cls.DCT_TITLE
        try:
            return cls(value)
        except ValueError:
            return None


class ResourceKind(str, Enum):
    CONCEPT = "concept"
    SCHEME = "scheme"
    COLLECTION = "collection"


_TITLED_ORDER = (
    LabelType.PREF_LABEL,
    LabelType.XL_PREF_LABEL,
    LabelType.DCT_TITLE,
    LabelType.DC_TITLE,
    LabelType.RDFS_LABEL,
)

LABEL_PRIORITY_TABLES: dict[ResourceKind, tuple[LabelType, ...]] = {
    ResourceKind.CONCEPT: (
        LabelType.PREF_LABEL,
        LabelType.XL_PREF_LABEL,
        LabelType.RDFS_LABEL,
    ),
    ResourceKind.SCHEME: _TITLED_ORDER,
    ResourceKind.COLLECTION: _TITLED_ORDER,
}


@dataclass(frozen=True)
class LabelCandidate:
    value: str
    lang: str | None = None
    type: LabelType = LabelType.PREF_LABEL


@dataclass(frozen=True)
class ResolvedLabel:
    value: str
    lang: str | None = None

    @classmethod
    def from_candidate(cls, candidate: LabelCandidate) -> ResolvedLabel:
        return cls(candidate.value, candidate.lang or None)


@dataclass(frozen=True)
class LanguagePreference:
    """The current override language plus the configured priority list."""

    preferred: str | None = None
    priorities: tuple[str, ...] = ()

    def effective(self) -> list[str]:
        """Languages in resolution order, duplicates removed."""
        order: list[str] = []
        for lang in (self.preferred, *self.priorities):
            if lang and lang not in order:
                order.append(lang)
        return order


def _dedupe(candidates: Iterable[LabelCandidate]) -> list[LabelCandidate]:
    seen: set[tuple[str, str]] = set()
    unique = []
    for candidate in candidates:
        key = (candidate.value, candidate.lang or "")
        if key not in seen:
            seen.add(key)
            unique.append(candidate)
    return unique


def sort_labels(
    candidates: Iterable[LabelCandidate], prefs: LanguagePreference
) -> list[LabelCandidate]:
    """Deduplicate and order labels for display.

    Order: languages in preference order, then labels without a language
    tag, then the remaining languages alphabetically. Input order is kept
    within each language.

    Args:
        candidates: Labels to sort.
        prefs: Language preference.

    Returns:
        New list with no two entries sharing the same (value, lang).
    """
    unique = _dedupe(candidates)
    rank = {lang: i for i, lang in enumerate(prefs.effective())}

    ranked = sorted((c for c in unique if c.lang and c.lang in rank), key=lambda c: rank[c.lang])
    no_lang = [c for c in unique if not c.lang]
    unranked = sorted((c for c in unique if c.lang and c.lang not in rank), key=lambda c: c.lang)
    return ranked + no_lang + unranked


def select_label(
    candidates: list[LabelCandidate], prefs: LanguagePreference
) -> LabelCandidate | None:
    """Pick the display label by language alone.

    Tries each preferred language in order, then the first label without a
    language tag, then the first candidate.
    """
    if not candidates:
        return None
    for lang in prefs.effective():
        for candidate in candidates:
            if candidate.lang == lang:
                return candidate
    for candidate in candidates:
        if not candidate.lang:
            return candidate
    return candidates[0]


def select_label_by_priority(
    candidates: list[LabelCandidate],
    kind: ResourceKind | str,
    prefs: LanguagePreference,
) -> LabelCandidate | None:
    """Pick the display label by label type first, then by language.

    The first label type of the kind's priority table that has any
    candidates wins; the language rule of ``select_label`` then picks within
    that group. Candidates whose type is not in the table are only used when
    no tabled type is present.

    Args:
        candidates: Labels of mixed types and languages.
        kind: Resource kind selecting the priority table.
        prefs: Language preference.

    Returns:
        One of the candidates, or None for an empty list.
    """
    if not candidates:
        return None
    table = LABEL_PRIORITY_TABLES[ResourceKind(kind)]
    for label_type in table:
        group = [c for c in candidates if c.type == label_type]
        if group:
            return select_label(group, prefs)
    return select_label(candidates, prefs)


def candidates_from_bindings(
    bindings: Iterable[Binding], subject_var: str
) -> dict[str, list[LabelCandidate]]:
    """Group ``?label ?labelLang ?labelType`` rows per subject.

    Rows without a label (from OPTIONAL label clauses) still register the
    subject with an empty candidate list. Rows with an unknown label type
    are treated as ``prefLabel``.

    Args:
        bindings: Parsed SPARQL result rows.
        subject_var: Variable holding the resource URI.

    Returns:
        Dict mapping subject URI to its candidates in result order.
    """
    from .sparql import Literal, binding_value

    grouped: dict[str, list[LabelCandidate]] = {}
    for row in bindings:
        subject = binding_value(row, subject_var)
        if subject is None:
            continue
        candidates = grouped.setdefault(subject, [])
        label = row.get("label")
        if label is None:
            continue
        lang = binding_value(row, "labelLang")
        if not lang and isinstance(label, Literal):
            lang = label.lang
        label_type = LabelType.parse(binding_value(row, "labelType")) or LabelType.PREF_LABEL
        candidates.append(LabelCandidate(label.value, lang or None, label_type))
    return grouped
