"""Tests for queries module."""
import pytest

from skos_explorer import queries
from skos_explorer.capabilities import Capabilities

SCHEME = "http://example.org/scheme"
CONCEPT = "http://example.org/c1"

ALL = Capabilities(
    has_in_scheme=True,
    has_top_concept_of=True,
    has_has_top_concept=True,
    has_broader=True,
    has_narrower=True,
    has_broader_transitive=True,
    has_narrower_transitive=True,
)
NO_TRANSITIVE = Capabilities(
    has_in_scheme=True,
    has_top_concept_of=True,
    has_has_top_concept=True,
    has_broader=True,
    has_narrower=True,
)


class TestHelpers:
    """Tests for prefix, IRI and pagination helpers."""

    def test_with_prefixes_adds_block(self):
        """Test that the prefix block is prepended once."""
        query = queries.with_prefixes("SELECT * WHERE { ?s ?p ?o }")
        assert query.startswith("PREFIX skos:")
        assert query.count("PREFIX skos:") == 1

    def test_with_prefixes_keeps_existing(self):
        """Test that queries already carrying prefixes are not changed."""
        query = "PREFIX ex: <http://example.org/>\nSELECT * WHERE { ?s ?p ?o }"
        assert queries.with_prefixes(query) == query

    def test_iri_escapes_spaces(self):
        """Test that characters forbidden in IRIs are escaped."""
        assert queries.iri("http://example.org/a b") == "<http://example.org/a%20b>"
        assert queries.iri("http://example.org/x#y") == "<http://example.org/x#y>"

    def test_iri_keeps_unicode(self):
        """Test that non-ASCII characters are legal in IRIs and kept as is."""
        assert queries.iri("http://example.org/Köln") == "<http://example.org/Köln>"
        assert queries.iri("http://example.org/%C3%B6") == "<http://example.org/%C3%B6>"
        assert queries.iri("http://example.org/a<b>") == "<http://example.org/a%3Cb%3E>"

    def test_split_page_has_more(self):
        """Test that the extra row signals another page."""
        rows, has_more = queries.split_page([1, 2, 3], 2)
        assert rows == [1, 2]
        assert has_more is True

    def test_split_page_last_page(self):
        """Test a page that is not full."""
        rows, has_more = queries.split_page([1, 2], 2)
        assert rows == [1, 2]
        assert has_more is False


class TestNoCapabilities:
    """Builders must return None when no fragment can be used."""

    @pytest.mark.parametrize("build", [
        lambda caps: queries.build_top_concepts_query(caps, SCHEME, 10),
        lambda caps: queries.build_explicit_top_concepts_query(caps, SCHEME, 10),
        lambda caps: queries.build_children_query(caps, CONCEPT, 10),
        lambda caps: queries.build_ancestors_query(caps, CONCEPT),
        lambda caps: queries.build_scheme_concept_count_query(caps, SCHEME),
        lambda caps: queries.build_collections_query(caps, SCHEME),
        lambda caps: queries.build_single_orphan_query(caps, 10),
        lambda caps: queries.build_orphan_collections_query(caps, 10),
    ])
    def test_builder_returns_none(self, build):
        """Test that a builder yields None without capabilities."""
        assert build(Capabilities()) is None

    def test_no_exclusion_queries(self):
        """Test that no exclusion query is produced without capabilities."""
        assert queries.build_orphan_exclusion_queries(Capabilities(), 10) == []

    def test_has_narrower_defaults_to_false(self):
        """Test the has-children binding without broader/narrower."""
        assert queries.has_narrower_binding(Capabilities()) == "BIND(false AS ?hasNarrower)"

    def test_capability_free_builders_always_work(self):
        """Test builders that do not depend on capabilities."""
        assert "skos:Collection" in queries.build_all_collections_query(10)
        assert "skos:Concept" in queries.build_all_concepts_query(10)
        assert "skos:member" in queries.build_child_collections_query(CONCEPT)


class TestPagination:
    """Paginated queries ask for one row more than the page size."""

    def test_top_concepts_limit_plus_one(self):
        """Test LIMIT and OFFSET of top concepts."""
        query = queries.build_top_concepts_query(ALL, SCHEME, 100, 200)
        assert "LIMIT 101" in query
        assert "OFFSET 200" in query

    def test_orphan_queries_limit_plus_one(self):
        """Test LIMIT of orphan and exclusion queries."""
        assert "LIMIT 51" in queries.build_single_orphan_query(ALL, 50)
        for named in queries.build_orphan_exclusion_queries(ALL, 50):
            assert "LIMIT 51" in named.query

    def test_all_concepts_limit_plus_one(self):
        """Test LIMIT of the all-concepts query."""
        assert "LIMIT 5001" in queries.build_all_concepts_query(5000)


class TestTopConcepts:
    """Tests for top concept queries."""

    def test_only_in_scheme_uses_fallback(self):
        """Test the in-scheme-without-broader fallback."""
        caps = Capabilities(has_in_scheme=True)
        query = queries.build_top_concepts_query(caps, SCHEME, 10)
        assert f"skos:inScheme <{SCHEME}>" in query
        assert "FILTER NOT EXISTS { ?concept skos:broader ?broader }" in query
        assert "topConceptOf" not in query
        assert "UNION" not in query.split("SELECT DISTINCT ?concept")[1].split("ORDER BY")[0]

    def test_explicit_requires_top_capability(self):
        """Test explicit top concepts ignore inScheme."""
        caps = Capabilities(has_in_scheme=True)
        assert queries.build_explicit_top_concepts_query(caps, SCHEME, 10) is None

        caps = Capabilities(has_top_concept_of=True)
        query = queries.build_explicit_top_concepts_query(caps, SCHEME, 10)
        assert f"?concept skos:topConceptOf <{SCHEME}>" in query
        assert "hasTopConcept" not in query

    def test_has_narrower_binding_uses_available_direction(self):
        """Test the has-children EXISTS only mentions supported predicates."""
        caps = Capabilities(has_top_concept_of=True, has_narrower=True)
        query = queries.build_top_concepts_query(caps, SCHEME, 10)
        assert "BIND(EXISTS { { ?concept skos:narrower [] } } AS ?hasNarrower)" in query
        assert "[] skos:broader ?concept" not in query


class TestChildrenAndAncestors:
    """Tests for children and ancestors queries."""

    def test_children_both_directions(self):
        """Test children use broader and narrower."""
        query = queries.build_children_query(ALL, CONCEPT, 10)
        assert f"?concept skos:broader <{CONCEPT}>" in query
        assert f"<{CONCEPT}> skos:narrower ?concept" in query

    def test_ancestors_prefer_transitive(self):
        """Test that paths are not used when transitive relations exist."""
        query = queries.build_ancestors_query(ALL, CONCEPT)
        assert "skos:broaderTransitive" in query
        assert "skos:narrowerTransitive" in query
        assert "skos:broader+" not in query
        assert "skos:narrower+" not in query
        assert f"FILTER(?ancestor != <{CONCEPT}>)" in query

    def test_ancestors_fall_back_to_paths(self):
        """Test property paths without transitive relations."""
        query = queries.build_ancestors_query(NO_TRANSITIVE, CONCEPT)
        assert "skos:broader+" in query
        assert "skos:narrower+" in query
        assert "Transitive" not in query


class TestMembership:
    """Tests for scheme membership fragments."""

    def test_hierarchy_requires_top_capability(self):
        """Test broader membership is unused without top concepts."""
        caps = Capabilities(has_in_scheme=True, has_broader=True, has_broader_transitive=True)
        query = queries.build_scheme_concept_count_query(caps, SCHEME)
        assert "broader" not in query
        assert "COUNT(DISTINCT ?concept)" in query

    def test_transitive_suppresses_path(self):
        """Test broaderTransitive replaces the broader+ path."""
        caps = Capabilities(has_top_concept_of=True, has_broader=True, has_broader_transitive=True)
        names = [f.name for f in queries.active_fragments(queries.membership_fragments(caps, "?s"), caps)]
        assert names == ["topConceptOf", "broaderTransitive"]

    def test_path_without_transitive(self):
        """Test broader+ is used when broaderTransitive is missing."""
        caps = Capabilities(has_has_top_concept=True, has_broader=True)
        query = queries.build_collections_query(caps, SCHEME)
        assert "?concept skos:broader+ ?top" in query
        assert f"<{SCHEME}> skos:hasTopConcept ?top" in query


class TestOrphanQueries:
    """Tests for orphan detection queries."""

    def test_exclusion_order_with_transitive(self):
        """Test exclusion query names and order with every capability."""
        names = [q.name for q in queries.build_orphan_exclusion_queries(ALL, 10)]
        assert names == [
            "inScheme",
            "topConceptOf",
            "hasTopConcept",
            "hasTopConcept-narrowerTransitive",
            "topConceptOf-narrowerTransitive",
            "hasTopConcept-broaderTransitive",
            "topConceptOf-broaderTransitive",
        ]

    def test_exclusion_order_with_paths(self):
        """Test path variants replace transitive ones when those are missing."""
        names = [q.name for q in queries.build_orphan_exclusion_queries(NO_TRANSITIVE, 10)]
        assert names == [
            "inScheme",
            "topConceptOf",
            "hasTopConcept",
            "hasTopConcept-narrower-path",
            "topConceptOf-narrower-path",
            "hasTopConcept-broader-path",
            "topConceptOf-broader-path",
        ]

    def test_path_suppressed_per_direction(self):
        """Test that only the direction with a transitive relation drops its path."""
        caps = Capabilities(
            has_top_concept_of=True, has_broader=True, has_narrower=True,
            has_narrower_transitive=True,
        )
        query = queries.build_single_orphan_query(caps, 10)
        assert "skos:narrowerTransitive" in query
        assert "skos:narrower+" not in query
        assert "skos:broader+" in query

    def test_single_query_uses_filter_not_exists(self):
        """Test the single orphan query shape."""
        caps = Capabilities(has_in_scheme=True)
        query = queries.build_single_orphan_query(caps, 10)
        assert "FILTER NOT EXISTS" in query
        assert "?concept skos:inScheme ?scheme" in query

    def test_orphan_collections_query(self):
        """Test orphan collections check member scheme membership."""
        caps = Capabilities(has_in_scheme=True)
        query = queries.build_orphan_collections_query(caps, 10)
        assert "?collection skos:member ?concept" in query
        assert "?concept skos:inScheme ?scheme" in query


class TestLabelQueries:
    """Tests for label queries."""

    def test_single_language(self):
        """Test that a language restricts labels exactly."""
        query = queries.build_labels_query([CONCEPT], "de")
        assert f"VALUES ?uri {{ <{CONCEPT}> }}" in query
        assert 'FILTER(LANG(?label) = "de")' in query
        assert "OPTIONAL" not in query

    def test_all_languages(self):
        """Test the optional all-languages form."""
        query = queries.build_labels_query([CONCEPT, SCHEME])
        assert "OPTIONAL" in query
        assert "FILTER(LANG" not in query
        for _, path in queries.LABEL_PREDICATES:
            assert path in query

    def test_label_types_bound(self):
        """Test that every branch binds its label type."""
        union = queries.label_union("?uri")
        assert 'BIND("prefLabel" AS ?labelType)' in union
        assert 'BIND("dctTitle" AS ?labelType)' in union


class TestRelationshipDetection:
    """Tests for the relationship detection query."""

    def test_projects_every_flag(self):
        """Test one EXISTS projection per relationship flag."""
        query = queries.build_relationship_detection_query()
        for _, key in queries.RELATIONSHIP_FLAGS:
            assert f"AS ?{key})" in query
        assert "WHERE {}" in query
