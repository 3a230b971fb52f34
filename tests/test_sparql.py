"""Tests for SPARQL execution module."""
import asyncio
import base64
import threading
from unittest.mock import MagicMock

import pytest
import requests

from skos_explorer import sparql
from skos_explorer.errors import ErrorCode, OperationCancelled, TransportError, error_for_status
from skos_explorer.sparql import (
    BNode,
    Endpoint,
    EndpointAuth,
    HttpExecutor,
    Literal,
    SparqlResults,
    Uri,
)

ENDPOINT = Endpoint("http://example.org/sparql")

RESULTS_JSON = {
    "head": {"vars": ["concept", "label"]},
    "results": {
        "bindings": [
            {
                "concept": {"type": "uri", "value": "http://example.org/c1"},
                "label": {"type": "literal", "value": "dog", "xml:lang": "en"},
            },
            {"concept": {"type": "bnode", "value": "b0"}},
        ]
    },
}


def _response(status=200, content_type="application/sparql-results+json", data=None, reason="OK"):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.reason = reason
    response.headers = {"content-type": content_type}
    response.json.return_value = data if data is not None else RESULTS_JSON
    return response


def _executor(*responses, retries=2):
    session = MagicMock()
    session.post.side_effect = list(responses)
    return HttpExecutor(retries=retries, retry_delay=0, session=session), session


class TestResults:
    """Tests for result parsing."""

    def test_from_json(self):
        """Test parsing SELECT results into typed terms."""
        results = SparqlResults.from_json(RESULTS_JSON)
        assert results.variables == ["concept", "label"]
        assert len(results) == 2
        assert results.bindings[0]["concept"] == Uri("http://example.org/c1")
        assert results.bindings[0]["label"] == Literal("dog", "en")
        assert results.bindings[1]["concept"] == BNode("b0")

    def test_ask(self):
        results = SparqlResults.from_json({"head": {}, "boolean": True})
        assert results.boolean is True
        assert results.bindings == []

    def test_binding_helpers(self):
        row = {"flag": Literal("1"), "label": Literal("chien", "fr"), "uri": Uri("http://x")}
        assert sparql.binding_bool(row, "flag") is True
        assert sparql.binding_bool(row, "missing") is False
        assert sparql.binding_lang(row, "label") == "fr"
        assert sparql.binding_lang(row, "uri") is None
        assert sparql.binding_value(row, "uri") == "http://x"


class TestEndpointAuth:
    """Tests for endpoint credentials."""

    def test_basic(self):
        auth = EndpointAuth("basic", username="user", password="secret")
        expected = base64.b64encode(b"user:secret").decode()
        assert auth.headers() == {"Authorization": f"Basic {expected}"}

    def test_bearer(self):
        assert EndpointAuth("bearer", token="t0k").headers() == {"Authorization": "Bearer t0k"}

    def test_apikey_custom_header(self):
        auth = EndpointAuth.from_dict({"type": "apikey", "apiKey": "k", "headerName": "X-Key"})
        assert auth.headers() == {"X-Key": "k"}

    def test_incomplete_credentials(self):
        """Test that incomplete credentials send nothing."""
        assert EndpointAuth("basic", username="user").headers() == {}
        assert EndpointAuth.from_dict(None).headers() == {}


class TestHttpExecutor:
    """Tests for HttpExecutor."""

    def test_success(self):
        """Test a successful POST with the expected headers."""
        executor, session = _executor(_response())
        endpoint = Endpoint("http://example.org/sparql", auth=EndpointAuth("bearer", token="abc"))

        results = asyncio.run(executor.execute(endpoint, "SELECT * WHERE { ?s ?p ?o }"))

        assert len(results) == 2
        _, kwargs = session.post.call_args
        assert kwargs["data"] == {"query": "SELECT * WHERE { ?s ?p ?o }"}
        assert kwargs["headers"]["Accept"] == "application/sparql-results+json"
        assert kwargs["headers"]["Authorization"] == "Bearer abc"

    def test_retries_server_errors(self):
        """Test that a 503 is retried."""
        executor, session = _executor(_response(503, reason="Service Unavailable"), _response())
        results = asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert len(results) == 2
        assert session.post.call_count == 2

    def test_gives_up_after_retries(self):
        executor, session = _executor(*[_response(500, reason="Boom")] * 3)
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert exc_info.value.code is ErrorCode.SERVER_ERROR
        assert session.post.call_count == 3

    def test_per_call_retries(self):
        """Test that retries=0 means a single attempt."""
        executor, session = _executor(_response(502), _response())
        with pytest.raises(TransportError):
            asyncio.run(executor.execute(ENDPOINT, "ASK {}", retries=0))
        assert session.post.call_count == 1

    @pytest.mark.parametrize("status,code", [
        (401, ErrorCode.AUTH_REQUIRED),
        (403, ErrorCode.AUTH_FAILED),
    ])
    def test_auth_errors_not_retried(self, status, code):
        executor, session = _executor(_response(status), _response())
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert exc_info.value.code is code
        assert session.post.call_count == 1

    def test_timeout(self):
        executor, session = _executor(*[requests.Timeout("slow")] * 3)
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert exc_info.value.code is ErrorCode.TIMEOUT

    def test_connection_error(self):
        executor, _ = _executor(requests.ConnectionError("refused"), retries=0)
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert exc_info.value.code is ErrorCode.NETWORK_ERROR

    def test_non_json_response(self):
        """Test that an HTML error page is rejected without retrying."""
        executor, session = _executor(_response(content_type="text/html"), _response())
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "ASK {}"))
        assert exc_info.value.code is ErrorCode.INVALID_RESPONSE
        assert session.post.call_count == 1

    def test_cancelled_before_request(self):
        cancel = threading.Event()
        cancel.set()
        executor, session = _executor(_response())
        with pytest.raises(OperationCancelled):
            asyncio.run(executor.execute(ENDPOINT, "ASK {}", signal=cancel))
        session.post.assert_not_called()


class TestErrorForStatus:
    """Tests for HTTP status mapping."""

    @pytest.mark.parametrize("status,code", [
        (400, ErrorCode.QUERY_ERROR),
        (404, ErrorCode.NOT_FOUND),
        (408, ErrorCode.TIMEOUT),
        (504, ErrorCode.SERVER_ERROR),
        (418, ErrorCode.UNKNOWN),
    ])
    def test_codes(self, status, code):
        assert error_for_status(status, "reason").code is code

    def test_message(self):
        assert str(error_for_status(503, "Service Unavailable")) == "Server error: Service Unavailable"
        assert str(error_for_status(418)) == "HTTP 418"


class FakePager:
    """Executor returning a fixed list of concept URIs per LIMIT/OFFSET."""

    def __init__(self, values):
        self.values = values
        self.offsets = []

    async def execute(self, endpoint, query, *, timeout=None, retries=None, signal=None):
        limit, offset = [int(part.split()[1]) for part in query.strip().splitlines()[-2:]]
        self.offsets.append(offset)
        rows = [{"concept": Uri(v)} for v in self.values[offset:offset + limit]]
        return SparqlResults(variables=["concept"], bindings=rows)


class TestFetchAllPages:
    """Tests for fetch_all_pages."""

    @staticmethod
    def _build(limit, offset):
        return f"SELECT ?concept WHERE {{}}\nLIMIT {limit + 1}\nOFFSET {offset}"

    def test_collects_all_pages(self):
        values = ["a", "b", "c", "b", "d"]
        pager = FakePager(values)
        seen = []

        result = asyncio.run(sparql.fetch_all_pages(
            pager, ENDPOINT, self._build, "concept", 2, on_page=seen.append
        ))

        assert result == ["a", "b", "c", "d"]
        assert pager.offsets == [0, 2, 4]
        assert seen == [2, 3, 4]

    def test_cancel(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            asyncio.run(sparql.fetch_all_pages(
                FakePager([]), ENDPOINT, self._build, "concept", 2, cancel=cancel
            ))


class TestOxigraphExecutor:
    """Tests for the local pyoxigraph executor."""

    @pytest.fixture
    def executor(self):
        pytest.importorskip("pyoxigraph")
        executor = sparql.OxigraphExecutor()
        executor.load_text(
            '<http://example.org/c1> <http://www.w3.org/2004/02/skos/core#prefLabel> "dog"@en .',
            "nt",
        )
        return executor

    def test_select(self, executor):
        results = asyncio.run(executor.execute(ENDPOINT, "SELECT ?s ?label WHERE { ?s ?p ?label }"))
        assert results.variables == ["s", "label"]
        row = results.bindings[0]
        assert row["s"] == Uri("http://example.org/c1")
        assert row["label"].value == "dog"
        assert row["label"].lang == "en"
        assert len(executor) == 1

    def test_query_runs_in_worker_thread(self, executor, monkeypatch):
        """Test that the blocking store query does not run on the event loop thread."""
        threads = []
        original = executor.query

        def query(sparql_text):
            threads.append(threading.get_ident())
            return original(sparql_text)

        monkeypatch.setattr(executor, "query", query)
        asyncio.run(executor.execute(ENDPOINT, "ASK { ?s ?p ?o }"))

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    def test_ask(self, executor):
        results = asyncio.run(executor.execute(ENDPOINT, "ASK { ?s ?p ?o }"))
        assert results.boolean is True

    def test_syntax_error(self, executor):
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(executor.execute(ENDPOINT, "SELEKT nothing"))
        assert exc_info.value.code is ErrorCode.QUERY_ERROR

    def test_missing_file(self, executor, tmp_path):
        with pytest.raises(FileNotFoundError):
            executor.load(tmp_path / "missing.ttl")
