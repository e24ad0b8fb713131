"""Query planning, side indexes and LD proxy resolution."""

from .errors import (
    GwasQueryError,
    BuildError,
    ThresholdExceededError,
    NotFoundError,
    DelegationError,
    ConfigurationError,
    QueryCancelledError,
)
from .records import VariantRecord, GenomicRange, RecordSet, parse_chrompos, pval_to_lp
from .chrompos import ChromPosFilter
from .rsid_index import IdentifierIndex, rsid_to_key
from .pval_index import ThresholdIndex
from .accelerator import BcftoolsAccelerator
from .planner import (
    AccessPath,
    RangeFilter,
    IdentifierFilter,
    ThresholdFilter,
    QueryPlanner,
)
from .ld_reference import (
    PhaseAlleles,
    LDTag,
    LDReference,
    PlinkRunner,
    PanelReference,
    TagTable,
)
from .proxy_resolver import ProxyMode, ProxyResult, ProxyResolver, align_proxy

__all__ = [
    "GwasQueryError",
    "BuildError",
    "ThresholdExceededError",
    "NotFoundError",
    "DelegationError",
    "ConfigurationError",
    "QueryCancelledError",
    "VariantRecord",
    "GenomicRange",
    "RecordSet",
    "parse_chrompos",
    "pval_to_lp",
    "ChromPosFilter",
    "IdentifierIndex",
    "rsid_to_key",
    "ThresholdIndex",
    "BcftoolsAccelerator",
    "AccessPath",
    "RangeFilter",
    "IdentifierFilter",
    "ThresholdFilter",
    "QueryPlanner",
    "PhaseAlleles",
    "LDTag",
    "LDReference",
    "PlinkRunner",
    "PanelReference",
    "TagTable",
    "ProxyMode",
    "ProxyResult",
    "ProxyResolver",
    "align_proxy",
]
