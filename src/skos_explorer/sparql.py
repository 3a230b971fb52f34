"""
SPARQL execution: typed result terms, endpoints and query executors.

The engine only ever talks to a ``QueryExecutor``. Two are provided:

- ``HttpExecutor`` posts queries to a remote SPARQL 1.1 endpoint with
  ``requests`` (run in a worker thread so the event loop is not blocked).
- ``OxigraphExecutor`` evaluates queries against a local pyoxigraph store,
  useful for dumps on disk and for tests.

Example:
    >>> executor = HttpExecutor()
    >>> endpoint = Endpoint("https://vocabs.example.org/sparql")
    >>> results = asyncio.run(executor.execute(endpoint, "SELECT * WHERE { ?s ?p ?o } LIMIT 1"))
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Union

from .errors import ErrorCode, OperationCancelled, TransportError, error_for_status
from .queries import split_page

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds, doubled on every retry


# =============================================================================
# Result terms
# =============================================================================


@dataclass(frozen=True)
class Uri:
    value: str


@dataclass(frozen=True)
class Literal:
    value: str
    lang: str | None = None
    datatype: str | None = None


@dataclass(frozen=True)
class BNode:
    value: str


Term = Union[Uri, Literal, BNode]


def parse_term(data: dict[str, Any]) -> Term:
    """Parse one term of a SPARQL JSON results binding.

    Args:
        data: Dict with ``type``, ``value`` and optionally ``xml:lang`` /
              ``lang`` and ``datatype``.

    Returns:
        Uri, Literal or BNode.
    """
    term_type = data.get("type", "literal")
    value = str(data.get("value", ""))
    if term_type == "uri":
        return Uri(value)
    if term_type == "bnode":
        return BNode(value)
    lang = data.get("xml:lang") or data.get("lang") or None
    return Literal(value, lang=lang, datatype=data.get("datatype"))


Binding = dict[str, Term]


@dataclass
class SparqlResults:
    """Parsed SELECT or ASK results."""

    variables: list[str] = field(default_factory=list)
    bindings: list[Binding] = field(default_factory=list)
    boolean: bool | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> SparqlResults:
        """Create results from the SPARQL 1.1 JSON results format."""
        head = data.get("head") or {}
        rows = (data.get("results") or {}).get("bindings") or []
        bindings = [
            {var: parse_term(term) for var, term in row.items()}
            for row in rows
        ]
        boolean = data.get("boolean")
        return cls(
            variables=list(head.get("vars") or []),
            bindings=bindings,
            boolean=bool(boolean) if boolean is not None else None,
        )

    def __len__(self) -> int:
        return len(self.bindings)


def binding_value(row: Binding, var: str) -> str | None:
    """Return the lexical value bound to ``var``, or None if unbound."""
    term = row.get(var)
    if term is None:
        return None
    return term.value


def binding_lang(row: Binding, var: str) -> str | None:
    """Return the language tag of a literal bound to ``var``."""
    term = row.get(var)
    if isinstance(term, Literal):
        return term.lang
    return None


def binding_bool(row: Binding, var: str) -> bool:
    """Interpret a bound value as a boolean (``true`` or ``1``)."""
    value = binding_value(row, var)
    return value is not None and value.strip().lower() in ("true", "1")


# =============================================================================
# Endpoints
# =============================================================================


@dataclass(frozen=True)
class EndpointAuth:
    """Credentials for a SPARQL endpoint.

    ``type`` is one of ``none``, ``basic``, ``bearer`` or ``apikey``.
    """

    type: str = "none"
    username: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    header_name: str = "X-API-Key"

    def headers(self) -> dict[str, str]:
        """HTTP headers carrying these credentials (empty when incomplete)."""
        if self.type == "basic" and self.username and self.password:
            encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            return {"Authorization": f"Basic {encoded}"}
        if self.type == "bearer" and self.token:
            return {"Authorization": f"Bearer {self.token}"}
        if self.type == "apikey" and self.api_key:
            return {self.header_name or "X-API-Key": self.api_key}
        return {}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EndpointAuth:
        if not data:
            return cls()
        return cls(
            type=str(data.get("type", "none")),
            username=data.get("username"),
            password=data.get("password"),
            token=data.get("token"),
            api_key=data.get("api_key", data.get("apiKey")),
            header_name=data.get("header_name", data.get("headerName")) or "X-API-Key",
        )


@dataclass(frozen=True)
class Endpoint:
    url: str
    name: str | None = None
    auth: EndpointAuth = field(default_factory=EndpointAuth)

    def __str__(self) -> str:
        return self.name or self.url


# =============================================================================
# Executors
# =============================================================================


def is_cancelled(cancel: Any) -> bool:
    """True if a cancellation token (anything with ``is_set()``) is set."""
    return cancel is not None and cancel.is_set()


class QueryExecutor(Protocol):
    """Anything that can run a SPARQL query against an endpoint."""

    async def execute(
        self,
        endpoint: Endpoint,
        query: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        signal: Any = None,
    ) -> SparqlResults: ...


def _preview(query: str, length: int = 200) -> str:
    text = " ".join(query.split())
    return text[:length] + ("..." if len(text) > length else "")


class HttpExecutor:
    """Execute SPARQL queries over HTTP using requests.

    Queries are POSTed as ``application/x-www-form-urlencoded``. Failed
    requests are retried with exponential backoff, except for authentication
    errors which fail immediately.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        session: Any = None,
    ):
        """Initialize the executor.

        Args:
            timeout: Per-request timeout in seconds.
            retries: Number of retries after the first attempt.
            retry_delay: Base delay in seconds before the first retry.
            session: Optional ``requests.Session`` to reuse connections.
        """
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.session = session

    async def execute(
        self,
        endpoint: Endpoint,
        query: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        signal: Any = None,
    ) -> SparqlResults:
        return await asyncio.to_thread(
            self.execute_sync,
            endpoint,
            query,
            timeout=self.timeout if timeout is None else timeout,
            retries=self.retries if retries is None else retries,
            signal=signal,
        )

    def execute_sync(
        self,
        endpoint: Endpoint,
        query: str,
        *,
        timeout: float,
        retries: int,
        signal: Any = None,
    ) -> SparqlResults:
        """Blocking implementation of ``execute``."""
        try:
            import requests
        except ImportError as e:
            raise ImportError(
                "requests required for remote SPARQL endpoints. "
                "Install with: pip install requests"
            ) from e

        logger.debug("Executing query on %s: %s", endpoint.url, _preview(query))
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/sparql-results+json",
            **endpoint.auth.headers(),
        }
        post = self.session.post if self.session is not None else requests.post

        last_error: TransportError | None = None
        for attempt in range(retries + 1):
            if is_cancelled(signal):
                raise OperationCancelled("Query cancelled")
            if attempt > 0:
                logger.debug("Retry attempt %d/%d", attempt, retries)
                time.sleep(self.retry_delay * 2 ** (attempt - 1))

            try:
                response = post(
                    endpoint.url, data={"query": query}, headers=headers, timeout=timeout
                )
            except requests.Timeout as e:
                logger.warning("SPARQL query timed out for %s: %s", endpoint.url, e)
                last_error = TransportError(ErrorCode.TIMEOUT, "Request timed out", str(e))
                continue
            except requests.ConnectionError as e:
                logger.warning("SPARQL query failed for %s: %s", endpoint.url, e)
                last_error = TransportError(ErrorCode.NETWORK_ERROR, "Network error", str(e))
                continue
            except requests.RequestException as e:
                logger.warning("SPARQL query failed for %s: %s", endpoint.url, e)
                last_error = TransportError(ErrorCode.UNKNOWN, "Unknown error", str(e))
                continue

            if not response.ok:
                error = error_for_status(response.status_code, response.reason or "")
                logger.warning("HTTP %d from %s: %s", response.status_code, endpoint.url, error.message)
                if not error.retryable:
                    raise error
                last_error = error
                continue

            content_type = response.headers.get("content-type", "")
            if "json" not in content_type:
                raise TransportError(
                    ErrorCode.INVALID_RESPONSE,
                    "Unexpected response format",
                    f"Expected JSON, got: {content_type}",
                )
            try:
                data = response.json()
            except ValueError as e:
                raise TransportError(
                    ErrorCode.INVALID_RESPONSE, "Unexpected response format", str(e)
                ) from e

            results = SparqlResults.from_json(data)
            logger.debug("Query successful: %d results", len(results))
            return results

        raise last_error or TransportError(ErrorCode.UNKNOWN, "Request failed after retries")


class OxigraphExecutor:
    """Execute SPARQL queries against a local Oxigraph store (pyoxigraph).

    Example:
        >>> executor = OxigraphExecutor()
        >>> executor.load("/path/to/thesaurus.ttl")
        >>> results = asyncio.run(executor.execute(Endpoint("local"), query))
    """

    def __init__(self, persistent_path: Path | None = None):
        """Initialize Oxigraph store.

        Args:
            persistent_path: If provided, use persistent storage at this path.
                            Otherwise, use in-memory storage.
        """
        try:
            import pyoxigraph
        except ImportError as e:
            raise ImportError(
                "pyoxigraph required for local SPARQL evaluation. "
                "Install with: pip install skos-explorer[oxigraph]"
            ) from e

        self._pyoxigraph = pyoxigraph
        if persistent_path:
            persistent_path.parent.mkdir(parents=True, exist_ok=True)
            self._store = pyoxigraph.Store(str(persistent_path))
        else:
            self._store = pyoxigraph.Store()

        self._loaded_files: set[str] = set()

    def _rdf_format(self, suffix: str) -> Any:
        formats = self._pyoxigraph.RdfFormat
        format_map = {
            "nt": formats.N_TRIPLES,
            "ntriples": formats.N_TRIPLES,
            "ttl": formats.TURTLE,
            "turtle": formats.TURTLE,
            "rdf": formats.RDF_XML,
            "xml": formats.RDF_XML,
            "nq": formats.N_QUADS,
        }
        return format_map.get(suffix.lower().lstrip("."), formats.N_TRIPLES)

    def load(self, path: Path | str, format: str | None = None) -> int:
        """Load RDF data from a file.

        Args:
            path: Path to RDF file (N-Triples, Turtle, RDF/XML, N-Quads).
            format: RDF format. Auto-detected from extension if not provided.

        Returns:
            Number of triples loaded.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"RDF file not found: {path}")

        path_str = str(path.resolve())
        if path_str in self._loaded_files:
            logger.debug("File already loaded: %s", path)
            return 0

        rdf_format = self._rdf_format(format or path.suffix)
        logger.info("Loading RDF data from %s (format: %s)...", path, rdf_format)
        initial_count = len(self._store)
        with open(path, "rb") as f:
            self._store.load(f, rdf_format)

        loaded = len(self._store) - initial_count
        self._loaded_files.add(path_str)
        logger.info("Loaded %d triples from %s (total: %d)", loaded, path, len(self._store))
        return loaded

    def load_text(self, data: str, format: str = "ttl") -> int:
        """Load RDF data from a string."""
        initial_count = len(self._store)
        self._store.load(data.encode("utf-8"), self._rdf_format(format))
        return len(self._store) - initial_count

    def _to_term(self, value: Any) -> Term:
        if isinstance(value, self._pyoxigraph.NamedNode):
            return Uri(value.value)
        if isinstance(value, self._pyoxigraph.BlankNode):
            return BNode(value.value)
        datatype = getattr(value, "datatype", None)
        return Literal(
            value.value,
            lang=getattr(value, "language", None) or None,
            datatype=datatype.value if datatype is not None else None,
        )

    def query(self, sparql: str) -> SparqlResults:
        """Evaluate a SELECT or ASK query synchronously."""
        query_results = self._store.query(sparql)
        if not hasattr(query_results, "variables"):
            # ASK
            return SparqlResults(boolean=bool(query_results))

        variables = query_results.variables
        bindings = []
        for solution in query_results:
            row: Binding = {}
            for var in variables:
                value = solution[var]
                if value is not None:
                    row[var.value] = self._to_term(value)
            bindings.append(row)
        return SparqlResults(variables=[v.value for v in variables], bindings=bindings)

    async def execute(
        self,
        endpoint: Endpoint,
        query: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        signal: Any = None,
    ) -> SparqlResults:
        if is_cancelled(signal):
            raise OperationCancelled("Query cancelled")
        logger.debug("Evaluating query locally: %s", _preview(query))
        try:
            return await asyncio.to_thread(self.query, query)
        except (SyntaxError, OSError) as e:
            raise TransportError(ErrorCode.QUERY_ERROR, "Invalid SPARQL query", str(e)) from e

    def __len__(self) -> int:
        """Return number of triples in store."""
        return len(self._store)


# =============================================================================
# Pagination
# =============================================================================


async def fetch_all_pages(
    executor: QueryExecutor,
    endpoint: Endpoint,
    build: Callable[[int, int], str],
    variable: str,
    page_size: int,
    cancel: Any = None,
    on_page: Callable[[int], None] | None = None,
) -> list[str]:
    """Collect one variable across all pages of a paginated query.

    Args:
        executor: Query executor.
        endpoint: Endpoint to query.
        build: ``build(limit, offset)`` returning a query that asks for
               ``limit + 1`` rows.
        variable: Variable whose values are collected.
        page_size: Rows per page.
        cancel: Optional cancellation token, checked before every page.
        on_page: Called with the running total after each page.

    Returns:
        Values in result order, duplicates removed.

    Raises:
        OperationCancelled: If ``cancel`` is set before a page is requested.
    """
    values: list[str] = []
    seen: set[str] = set()
    offset = 0
    while True:
        if is_cancelled(cancel):
            raise OperationCancelled("Pagination cancelled")
        results = await executor.execute(endpoint, build(page_size, offset), signal=cancel)
        rows, has_more = split_page(results.bindings, page_size)
        for row in rows:
            value = binding_value(row, variable)
            if value is not None and value not in seen:
                seen.add(value)
                values.append(value)
        logger.debug("Fetched page at offset %d: %d rows (total %d)", offset, len(rows), len(values))
        if on_page is not None:
            on_page(len(values))
        if not has_more:
            return values
        offset += page_size
