"""Tests for SKOS-XL labels."""
import asyncio

from skos_explorer.errors import ErrorCode, TransportError
from skos_explorer.labels import LabelCandidate, LabelType, LanguagePreference, select_label_by_priority
from skos_explorer.sparql import Endpoint, Literal, SparqlResults, Uri
from skos_explorer.xl_labels import build_xl_labels_query, load_xl_labels, xl_candidates

ENDPOINT = Endpoint("http://example.org/sparql")
URI = "http://example.org/c1"


class FixedExecutor:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.retries = []

    async def execute(self, endpoint, query, *, timeout=None, retries=None, signal=None):
        self.retries.append(retries)
        if self.error:
            raise self.error
        return SparqlResults(bindings=self.rows)


def _xl(xl_uri, value, lang, kind):
    row = {"literalForm": Literal(value, lang), "labelType": Literal(kind)}
    if xl_uri:
        row["xlLabel"] = Uri(xl_uri)
    if lang:
        row["literalLang"] = Literal(lang)
    return row


class TestXLLabels:
    """Tests for SKOS-XL label loading."""

    def test_query_covers_all_types(self):
        query = build_xl_labels_query(URI)
        for kind in ("prefLabel", "altLabel", "hiddenLabel"):
            assert f"<{URI}> skosxl:{kind} ?xlLabel" in query
        assert "skosxl:literalForm" in query

    def test_loads_and_deduplicates(self):
        """Test that XL labels are deduplicated by their own URI."""
        executor = FixedExecutor([
            _xl("http://example.org/xl1", "Dog", "en", "prefLabel"),
            _xl("http://example.org/xl1", "Dog", "en", "prefLabel"),
            _xl("http://example.org/xl2", "Hound", "en", "altLabel"),
            _xl(None, "doggo", None, "hiddenLabel"),
            _xl(None, "doggo", None, "hiddenLabel"),
        ])

        labels = asyncio.run(load_xl_labels(executor, ENDPOINT, URI))

        assert [xl.literal_form for xl in labels] == [
            LabelCandidate("Dog", "en", LabelType.XL_PREF_LABEL),
            LabelCandidate("Hound", "en", LabelType.XL_ALT_LABEL),
            LabelCandidate("doggo", None, LabelType.XL_HIDDEN_LABEL),
        ]
        assert executor.retries == [0]

    def test_unsupported_endpoint(self):
        """Test that a rejected query yields no labels."""
        executor = FixedExecutor(error=TransportError(ErrorCode.QUERY_ERROR, "Invalid SPARQL query"))
        assert asyncio.run(load_xl_labels(executor, ENDPOINT, URI)) == []

    def test_candidates_mix_with_plain_labels(self):
        """Test that an XL prefLabel beats rdfs:label in label selection."""
        executor = FixedExecutor([_xl("http://example.org/xl1", "Dog", "en", "prefLabel")])
        labels = asyncio.run(load_xl_labels(executor, ENDPOINT, URI))
        candidates = [LabelCandidate("dog (rdfs)", "en", LabelType.RDFS_LABEL), *xl_candidates(labels)]

        best = select_label_by_priority(candidates, "concept", LanguagePreference(None, ("en",)))

        assert best.value == "Dog"
