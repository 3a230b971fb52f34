"""
SKOS Explorer - Capability-adaptive browsing of SKOS vocabularies over SPARQL

Features:
- Detect which SKOS relationships and languages an endpoint populates
- Build concept tree, collection and label queries that only use what exists
- Resolve display labels progressively, one language at a time
- Find orphan concepts and collections not reachable from any scheme
"""

from ._version import __version__
from .capabilities import Capabilities
from .errors import (
    ErrorCode,
    OperationCancelled,
    SkosExplorerError,
    TransportError,
    UnsupportedCapabilityError,
)
from .labels import (
    LabelCandidate,
    LabelType,
    LanguagePreference,
    ResolvedLabel,
    ResourceKind,
    select_label,
    select_label_by_priority,
    sort_labels,
)
from .orphans import (
    OrphanPhase,
    OrphanProgress,
    calculate_orphan_collections,
    calculate_orphan_concepts,
    calculate_orphan_concepts_fast,
    find_orphan_concepts,
)
from .progressive import ProgressiveLabelLoader
from .sparql import Endpoint, EndpointAuth, HttpExecutor, OxigraphExecutor, SparqlResults

__all__ = [
    "__version__",
    "Capabilities",
    "ErrorCode",
    "SkosExplorerError",
    "TransportError",
    "UnsupportedCapabilityError",
    "OperationCancelled",
    "LabelCandidate",
    "LabelType",
    "LanguagePreference",
    "ResolvedLabel",
    "ResourceKind",
    "select_label",
    "select_label_by_priority",
    "sort_labels",
    "OrphanPhase",
    "OrphanProgress",
    "calculate_orphan_concepts",
    "calculate_orphan_concepts_fast",
    "calculate_orphan_collections",
    "find_orphan_concepts",
    "ProgressiveLabelLoader",
    "Endpoint",
    "EndpointAuth",
    "HttpExecutor",
    "OxigraphExecutor",
    "SparqlResults",
]
