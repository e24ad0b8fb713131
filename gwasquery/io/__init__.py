"""Input/Output modules for file operations."""

from .vcf_reader import VariantStore, StoreHeader
from .result_writer import ResultWriter

__all__ = [
    "VariantStore",
    "StoreHeader",
    "ResultWriter",
]
