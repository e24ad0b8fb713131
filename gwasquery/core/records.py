"""Variant records, genomic ranges and position-sorted record sets."""

import math
import re
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np
from numpy.typing import NDArray

__all__ = [
    "VariantRecord",
    "RecordKey",
    "GenomicRange",
    "RecordSet",
    "parse_chrompos",
    "pval_to_lp",
]

RecordKey = Tuple[str, int, str, str, str]

_CHROMPOS_RE = re.compile(r"^\s*([^:\s]+)(?::(\d+)(?:-(\d+))?)?\s*$")


def pval_to_lp(pval: float) -> float:
    """Transform a p-value into the -log10 scale used by GWAS-VCF LP fields.

    Example:
        >>> pval_to_lp(0.01)
        2.0
    """
    if not (0.0 < pval <= 1.0):
        raise ValueError(f"p-value must be in (0, 1], got {pval}")
    return -math.log10(pval)


@dataclass(frozen=True)
class VariantRecord:
    """Summary statistics of one variant in one study.

    Attributes:
        chrom: Chromosome name as written in the source
        pos: 1-based position
        ref: Non-effect allele
        alt: Effect allele
        rsid: Variant identifier, usually "rs<digits>"
        es: Effect estimate
        se: Standard error of the effect estimate
        lp: -log10 p-value
        af: Effect allele frequency
        ss: Sample size
        study: Study identifier (the VCF sample column)
        source_rsid: Identifier of the variant that supplied the data when
            this record stands in for another one as an LD proxy
    """

    chrom: str
    pos: int
    ref: str
    alt: str
    rsid: Optional[str]
    es: Optional[float] = None
    se: Optional[float] = None
    lp: Optional[float] = None
    af: Optional[float] = None
    ss: Optional[float] = None
    study: str = ""
    source_rsid: Optional[str] = None

    @property
    def key(self) -> RecordKey:
        return (self.chrom, self.pos, self.ref, self.alt, self.study)

    @property
    def provenance(self) -> Optional[str]:
        """Identifier of the variant the statistics were measured on."""
        return self.source_rsid or self.rsid

    @property
    def is_proxy(self) -> bool:
        return self.source_rsid is not None and self.source_rsid != self.rsid

    @property
    def pval(self) -> Optional[float]:
        if self.lp is None:
            return None
        return float(10 ** (-self.lp))


@dataclass(frozen=True)
class GenomicRange:
    """Inclusive chromosome interval; both bounds absent covers the chromosome.

    Example:
        >>> GenomicRange("1", 100, 200).contains("1", 150)
        True
    """

    chrom: str
    start: Optional[int] = None
    end: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.chrom:
            raise ValueError("Genomic range requires a chromosome")
        if (self.start is None) != (self.end is None):
            raise ValueError(
                f"Genomic range {self.chrom} must define both start and end or neither"
            )
        if self.start is not None and self.end is not None:
            if self.start < 1:
                raise ValueError(f"Range start must be >= 1, got {self.start}")
            if self.start > self.end:
                raise ValueError(
                    f"Range start {self.start} is greater than end {self.end}"
                )

    @classmethod
    def point(cls, chrom: str, pos: int) -> "GenomicRange":
        return cls(chrom, pos, pos)

    @property
    def is_point(self) -> bool:
        return self.start is not None and self.start == self.end

    def contains(self, chrom: str, pos: int) -> bool:
        if chrom != self.chrom:
            return False
        if self.start is None or self.end is None:
            return True
        return self.start <= pos <= self.end

    def __str__(self) -> str:
        if self.start is None:
            return self.chrom
        if self.is_point:
            return f"{self.chrom}:{self.start}"
        return f"{self.chrom}:{self.start}-{self.end}"


def parse_chrompos(text: str) -> GenomicRange:
    """Parse "chr:start-end", "chr:pos" or "chr" into a GenomicRange.

    Example:
        >>> parse_chrompos("1:1097291-1099437")
        GenomicRange(chrom='1', start=1097291, end=1099437)
        >>> parse_chrompos("1:721290")
        GenomicRange(chrom='1', start=721290, end=721290)
    """
    match = _CHROMPOS_RE.match(text or "")
    if match is None:
        raise ValueError(f"Malformed genomic range '{text}'")
    chrom, start, end = match.groups()
    if start is None:
        return GenomicRange(chrom)
    if end is None:
        return GenomicRange.point(chrom, int(start))
    return GenomicRange(chrom, int(start), int(end))


class RecordSet:
    """Immutable collection of records sorted by position within chromosome.

    Chromosomes keep the order in which they first appear; records sharing a
    position keep their input order. Per-chromosome position arrays back the
    logarithmic range lookups of the ChromPos filter.
    """

    def __init__(self, records: Iterable[VariantRecord] = ()):
        items = list(records)
        chrom_order: Dict[str, int] = {}
        for rec in items:
            chrom_order.setdefault(rec.chrom, len(chrom_order))
        items.sort(key=lambda r: (chrom_order[r.chrom], r.pos))
        self._init_sorted(items)

    @classmethod
    def _from_sorted(cls, records: Sequence[VariantRecord]) -> "RecordSet":
        obj = cls.__new__(cls)
        obj._init_sorted(list(records))
        return obj

    def _init_sorted(self, records: List[VariantRecord]) -> None:
        self._records: Tuple[VariantRecord, ...] = tuple(records)
        self._positions: NDArray[np.int64] = np.fromiter(
            (r.pos for r in self._records), dtype=np.int64, count=len(self._records)
        )
        self._blocks: Dict[str, Tuple[int, int]] = {}
        for idx, rec in enumerate(self._records):
            lo, _ = self._blocks.get(rec.chrom, (idx, idx))
            self._blocks[rec.chrom] = (lo, idx + 1)

    @property
    def records(self) -> Tuple[VariantRecord, ...]:
        return self._records

    @property
    def chromosomes(self) -> List[str]:
        return list(self._blocks)

    def block(self, chrom: str) -> Optional[Tuple[int, int]]:
        """Return the [lo, hi) slice holding chromosome ``chrom``."""
        return self._blocks.get(chrom)

    def positions(self, lo: int, hi: int) -> NDArray[np.int64]:
        return self._positions[lo:hi]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[VariantRecord]:
        return iter(self._records)

    def __getitem__(self, idx: int) -> VariantRecord:
        return self._records[idx]

    def __repr__(self) -> str:
        return f"RecordSet({len(self._records)} records)"

    def rsids(self) -> FrozenSet[str]:
        return frozenset(r.rsid for r in self._records if r.rsid)

    def keys(self) -> FrozenSet[RecordKey]:
        return frozenset(r.key for r in self._records)

    def select(self, indices: Iterable[int]) -> "RecordSet":
        """Subset by positional indices, keeping this set's order."""
        return RecordSet._from_sorted([self._records[i] for i in sorted(set(indices))])

    def where(self, predicate: Callable[[VariantRecord], bool]) -> "RecordSet":
        return RecordSet._from_sorted([r for r in self._records if predicate(r)])

    def intersect(self, other: "RecordSet") -> "RecordSet":
        """Records of this set whose key also occurs in ``other``."""
        keys = other.keys()
        return self.where(lambda r: r.key in keys)
