"""gwasquery - indexed querying of GWAS-VCF summary statistics.

Region, identifier and p-value filters over GWAS-VCF files, backed by
optional side indexes, with LD proxy substitution for identifiers that
are missing from a study.
"""

from .app import GwasQueryApp, GwasQueryConfig
from .core.records import VariantRecord, GenomicRange, RecordSet
from .core.planner import QueryPlanner, RangeFilter, IdentifierFilter, ThresholdFilter
from .core.proxy_resolver import ProxyResolver, ProxyMode
from .io.vcf_reader import VariantStore

__version__ = "1.0.0"
__all__ = [
    "GwasQueryApp",
    "GwasQueryConfig",
    "VariantRecord",
    "GenomicRange",
    "RecordSet",
    "QueryPlanner",
    "RangeFilter",
    "IdentifierFilter",
    "ThresholdFilter",
    "ProxyResolver",
    "ProxyMode",
    "VariantStore",
]
