#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK
"""
Command-line interface for skos-explorer
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import argcomplete

from . import analysis, orphans, queries, tree
from ._version import __version__
from .capabilities import Capabilities
from .config import Config
from .errors import SkosExplorerError
from .labels import ResourceKind
from .progressive import ProgressiveLabelLoader
from .sparql import Endpoint, EndpointAuth, HttpExecutor, OxigraphExecutor, QueryExecutor

logger = logging.getLogger(__name__)

QUERY_KINDS = [
    "top-concepts",
    "explicit-top-concepts",
    "children",
    "ancestors",
    "scheme-count",
    "collections",
    "child-collections",
    "all-collections",
    "all-concepts",
    "labels",
    "orphans",
    "orphan-exclusions",
    "orphan-collections",
    "relationships",
]


def open_endpoint(target: str | None, config: Config) -> tuple[QueryExecutor, Endpoint]:
    """Create an executor for an endpoint URL or a local RDF file.

    Raises:
        SkosExplorerError: If no endpoint is given or configured.
    """
    target = target or config.endpoint_url
    if not target:
        raise SkosExplorerError("No endpoint given (pass ENDPOINT or set endpoint.url in config)")

    path = Path(target)
    if path.exists():
        executor = OxigraphExecutor()
        executor.load(path)
        return executor, Endpoint(str(path.resolve()), name=path.name)

    executor = HttpExecutor(
        timeout=config.endpoint_timeout,
        retries=config.endpoint_retries,
        retry_delay=config.endpoint_retry_delay,
    )
    return executor, Endpoint(target, auth=EndpointAuth.from_dict(config.endpoint_auth))


async def _capabilities(executor: QueryExecutor, endpoint: Endpoint, config: Config) -> Capabilities:
    caps = config.capabilities
    if caps is not None:
        return caps
    return await analysis.analyze_endpoint(executor, endpoint)


def config_command(show: bool = False, show_path: bool = False) -> int:
    """Show configuration information."""
    config = Config()

    if show_path:
        if config.path:
            print(config.path)
        else:
            print("No configuration file found")
        return 0

    if config.path:
        print(f"# Configuration loaded from: {config.path}")
    else:
        print("# No configuration file found, showing defaults")
    print()
    print(json.dumps(config.data, indent=2))
    return 0


def analyze_command(target: str | None, config: Config, output_json: bool = False) -> int:
    """Analyze an endpoint's SKOS capabilities."""
    executor, endpoint = open_endpoint(target, config)
    caps = asyncio.run(analysis.analyze_endpoint(executor, endpoint))

    if output_json:
        print(json.dumps(caps.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"Endpoint: {endpoint}")
    total = caps.total_concepts
    print(f"Concepts: {total if total is not None else 'unknown'}")
    print(f"Relationships: {caps.relationship_count()}/7 available")
    for key, present in caps.relationships().items():
        print(f"  {'✅' if present else '❌'} {key}")
    if caps.languages:
        langs = ", ".join(f"{lang} ({count})" for lang, count in caps.languages)
        print(f"Languages: {langs}")
    return 0


def query_command(
    kind: str,
    config: Config,
    scheme: str | None = None,
    uris: list[str] | None = None,
    limit: int = 100,
    offset: int = 0,
    lang: str | None = None,
) -> int:
    """Print a synthesized query for the configured capabilities."""
    caps = config.capabilities or Capabilities()
    uris = uris or []
    uri = uris[0] if uris else None

    needs_scheme = {"top-concepts", "explicit-top-concepts", "scheme-count", "collections"}
    needs_uri = {"children", "ancestors", "child-collections", "labels"}
    if kind in needs_scheme and not scheme:
        print(f"❌ Query '{kind}' requires --scheme")
        return 1
    if kind in needs_uri and not uri:
        print(f"❌ Query '{kind}' requires --uri")
        return 1

    if kind == "top-concepts":
        query = queries.build_top_concepts_query(caps, scheme, limit, offset)
    elif kind == "explicit-top-concepts":
        query = queries.build_explicit_top_concepts_query(caps, scheme, limit, offset)
    elif kind == "children":
        query = queries.build_children_query(caps, uri, limit, offset)
    elif kind == "ancestors":
        query = queries.build_ancestors_query(caps, uri)
    elif kind == "scheme-count":
        query = queries.build_scheme_concept_count_query(caps, scheme)
    elif kind == "collections":
        query = queries.build_collections_query(caps, scheme)
    elif kind == "child-collections":
        query = queries.build_child_collections_query(uri)
    elif kind == "all-collections":
        query = queries.build_all_collections_query(limit, offset)
    elif kind == "all-concepts":
        query = queries.build_all_concepts_query(limit, offset)
    elif kind == "labels":
        query = queries.build_labels_query(uris, lang)
    elif kind == "orphans":
        query = queries.build_single_orphan_query(caps, limit, offset)
    elif kind == "orphan-exclusions":
        named = queries.build_orphan_exclusion_queries(caps, limit, offset)
        query = "\n".join(f"# {q.name}\n{q.query}" for q in named) or None
    elif kind == "orphan-collections":
        query = queries.build_orphan_collections_query(caps, limit, offset)
    elif kind == "relationships":
        query = queries.build_relationship_detection_query()
    else:
        print(f"❌ Unknown query kind: {kind}")
        return 1

    if query is None:
        print(f"❌ The endpoint capabilities do not support a '{kind}' query")
        return 1
    print(query)
    return 0


def tree_command(
    target: str | None,
    config: Config,
    uri: str,
    top: bool,
    limit: int | None = None,
    offset: int = 0,
    lang: str | None = None,
) -> int:
    """List top concepts of a scheme, or children of a concept."""
    executor, endpoint = open_endpoint(target, config)
    limit = limit or config.tree_page_size
    prefs = config.language_preference(lang)

    async def run() -> tree.Page:
        caps = await _capabilities(executor, endpoint, config)
        if top:
            query = queries.build_top_concepts_query(caps, uri, limit, offset)
        else:
            query = queries.build_children_query(caps, uri, limit, offset)
        if query is None:
            raise SkosExplorerError("The endpoint capabilities do not support this query")
        return await tree.load_page(executor, endpoint, query, limit, prefs=prefs)

    page = asyncio.run(run())
    for node in page.nodes:
        marker = "▶" if node.has_narrower else "○"
        print(f"{marker} {node.display}  <{node.uri}>")
    if page.has_more:
        print(f"... more (use --offset {offset + limit})")
    return 0


def labels_command(
    target: str | None,
    config: Config,
    uris: list[str],
    kind: str = "concept",
    lang: str | None = None,
    output_json: bool = False,
) -> int:
    """Resolve display labels for resources."""
    executor, endpoint = open_endpoint(target, config)
    loader = ProgressiveLabelLoader(
        executor,
        endpoint,
        config.language_preference(lang),
        threshold=config.label_threshold,
        max_language_iterations=config.max_language_iterations,
    )
    resolved = asyncio.run(loader.load(uris, ResourceKind(kind)))

    if output_json:
        data = {uri: asdict(resolved[uri]) if uri in resolved else None for uri in uris}
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    for uri in uris:
        label = resolved.get(uri)
        if label is None:
            print(f"{uri}: (no label)")
        elif label.lang:
            print(f"{uri}: {label.value} @{label.lang}")
        else:
            print(f"{uri}: {label.value}")
    return 0


def orphans_command(
    target: str | None,
    config: Config,
    method: str | None = None,
    collections: bool = False,
    output_json: bool = False,
) -> int:
    """Find concepts (or collections) not reachable from any scheme."""
    executor, endpoint = open_endpoint(target, config)
    strategy = method or config.orphan_strategy
    page_size = config.orphan_page_size
    final: list[orphans.OrphanProgress] = []

    def on_progress(state: orphans.OrphanProgress) -> None:
        logger.debug(
            "%s: %d remaining (%s)", state.phase.value, state.remaining_candidates,
            state.current_query_name or "-",
        )
        final[:] = [state]

    async def run() -> list[str]:
        caps = await _capabilities(executor, endpoint, config)
        if collections:
            return await orphans.calculate_orphan_collections(
                executor, endpoint, caps, page_size=page_size
            )
        return await orphans.find_orphan_concepts(
            executor, endpoint, caps, strategy, on_progress=on_progress, page_size=page_size
        )

    found = asyncio.run(run())

    if output_json:
        print(json.dumps(found, indent=2))
        return 0

    kind = "collections" if collections else "concepts"
    for uri in found:
        print(uri)
    print(f"✅ {len(found)} orphan {kind}")
    if final and final[0].failed_queries:
        print(f"⚠️  Failed exclusion queries (result may be incomplete): {', '.join(final[0].failed_queries)}")
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    config = Config()

    parser_cli = argparse.ArgumentParser(
        description="skos-explorer - Explore SKOS vocabularies on SPARQL endpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze an endpoint
  skos-explorer analyze https://vocabs.example.org/sparql

  # List top concepts of a scheme
  skos-explorer top-concepts https://vocabs.example.org/sparql https://example.org/scheme

  # Find orphan concepts in a local Turtle file
  skos-explorer orphans thesaurus.ttl --method slow

  # Print the query used for orphan detection
  skos-explorer query orphans
        """
    )
    parser_cli.add_argument(
        '--version', '-V',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser_cli.add_argument('--lang', help='Preferred label language (overrides config)')
    parser_cli.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser_cli.add_subparsers(dest='command', help='Command to run')

    config_parser = subparsers.add_parser('config', help='Show configuration')
    config_parser.add_argument('--show', action='store_true', help='Show merged configuration')
    config_parser.add_argument('--path', action='store_true', help='Show config file path')

    analyze_parser = subparsers.add_parser('analyze', help='Detect endpoint capabilities')
    analyze_parser.add_argument('endpoint', nargs='?', help='SPARQL endpoint URL or RDF file')
    analyze_parser.add_argument('--json', action='store_true', help='Output as JSON')

    query_parser = subparsers.add_parser('query', help='Print a synthesized SPARQL query')
    query_parser.add_argument('kind', choices=QUERY_KINDS, help='Query to build')
    query_parser.add_argument('--scheme', help='Concept scheme URI')
    query_parser.add_argument('--uri', action='append', help='Resource URI (repeatable for labels)')
    query_parser.add_argument('--limit', type=int, default=100, help='Page size (default: 100)')
    query_parser.add_argument('--offset', type=int, default=0, help='Page offset')

    top_parser = subparsers.add_parser('top-concepts', help='List top concepts of a scheme')
    top_parser.add_argument('endpoint', help='SPARQL endpoint URL or RDF file')
    top_parser.add_argument('scheme', help='Concept scheme URI')
    top_parser.add_argument('--limit', type=int, help='Page size')
    top_parser.add_argument('--offset', type=int, default=0, help='Page offset')

    children_parser = subparsers.add_parser('children', help='List narrower concepts')
    children_parser.add_argument('endpoint', help='SPARQL endpoint URL or RDF file')
    children_parser.add_argument('uri', help='Parent concept URI')
    children_parser.add_argument('--limit', type=int, help='Page size')
    children_parser.add_argument('--offset', type=int, default=0, help='Page offset')

    labels_parser = subparsers.add_parser('labels', help='Resolve display labels')
    labels_parser.add_argument('endpoint', help='SPARQL endpoint URL or RDF file')
    labels_parser.add_argument('uris', nargs='+', help='Resource URIs')
    labels_parser.add_argument(
        '--kind', choices=[k.value for k in ResourceKind], default='concept',
        help='Resource kind (default: concept)'
    )
    labels_parser.add_argument('--json', action='store_true', help='Output as JSON')

    orphans_parser = subparsers.add_parser('orphans', help='Find orphan concepts or collections')
    orphans_parser.add_argument('endpoint', nargs='?', help='SPARQL endpoint URL or RDF file')
    orphans_parser.add_argument(
        '--method', choices=list(orphans.STRATEGIES),
        help='Detection method (default: orphans.strategy from config)'
    )
    orphans_parser.add_argument('--collections', action='store_true', help='Find orphan collections')
    orphans_parser.add_argument('--json', action='store_true', help='Output as JSON')

    argcomplete.autocomplete(parser_cli)
    args = parser_cli.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == 'config':
            return config_command(show=args.show, show_path=args.path)
        elif args.command == 'analyze':
            return analyze_command(args.endpoint, config, args.json)
        elif args.command == 'query':
            return query_command(
                args.kind, config, scheme=args.scheme, uris=args.uri,
                limit=args.limit, offset=args.offset, lang=args.lang,
            )
        elif args.command == 'top-concepts':
            return tree_command(args.endpoint, config, args.scheme, True, args.limit, args.offset, args.lang)
        elif args.command == 'children':
            return tree_command(args.endpoint, config, args.uri, False, args.limit, args.offset, args.lang)
        elif args.command == 'labels':
            return labels_command(args.endpoint, config, args.uris, args.kind, args.lang, args.json)
        elif args.command == 'orphans':
            return orphans_command(args.endpoint, config, args.method, args.collections, args.json)
        else:
            parser_cli.print_help()
            return 1
    except (SkosExplorerError, ValueError) as e:
        print(f"❌ {e}")
        return 1
    except ImportError as e:
        print(f"❌ Missing required package: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
