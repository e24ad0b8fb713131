"""GWAS-VCF reading through pysam."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set

import pysam

from ..core.errors import ConfigurationError, QueryCancelledError
from ..core.records import GenomicRange, RecordKey, RecordSet, VariantRecord
from ..utils.indexing import has_variant_index
from ..utils.memory_monitor import MemoryMonitor

__all__ = ["StoreHeader", "VariantStore", "SUMMARY_FIELDS"]

# GWAS-VCF FORMAT keys mapped onto VariantRecord attributes
SUMMARY_FIELDS = {"ES": "es", "SE": "se", "LP": "lp", "AF": "af", "SS": "ss"}


@dataclass
class StoreHeader:
    """GWAS-VCF header information.

    Attributes:
        studies: Study identifiers (sample columns)
        fields: FORMAT key to description
        contigs: Contig names declared in the header
    """

    studies: List[str]
    fields: Dict[str, str]
    contigs: List[str]


def _first(value: object) -> Optional[float]:
    """Unwrap Number=A tuples and map missing values to None."""
    if isinstance(value, tuple):
        value = value[0] if value else None
    if value is None:
        return None
    return float(value)


class VariantStore:
    """Read-only handle on a GWAS-VCF file.

    Range reads use the tabix/CSI index when one is present; otherwise the
    file is streamed once and ranges are resolved in memory by the caller.
    """

    def __init__(
        self,
        path: Path,
        logger: Optional[logging.Logger] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)
        self.memory_monitor = memory_monitor
        self.shutdown_checker = shutdown_checker
        if not self.path.exists():
            raise ConfigurationError(f"Variant file not found: {self.path}")
        self._header: Optional[StoreHeader] = None

    @property
    def indexed(self) -> bool:
        return has_variant_index(self.path)

    def header(self) -> StoreHeader:
        if self._header is None:
            with pysam.VariantFile(str(self.path)) as vf:
                self._header = StoreHeader(
                    studies=list(vf.header.samples),
                    fields={
                        key: meta.description
                        for key, meta in vf.header.formats.items()
                    },
                    contigs=[str(c) for c in vf.header.contigs],
                )
        return self._header

    def iter_records(
        self, ranges: Optional[Sequence[GenomicRange]] = None
    ) -> Iterator[VariantRecord]:
        """Yield one VariantRecord per (variant line, study).

        With ``ranges`` and an index, only those regions are fetched; records
        covered by overlapping ranges are yielded once. Without an index the
        whole file is streamed and ``ranges`` is ignored.

        Raises:
            QueryCancelledError: the shutdown checker requested a stop
        """
        with pysam.VariantFile(str(self.path)) as vf:
            studies = list(vf.header.samples)
            present = [k for k in SUMMARY_FIELDS if k in vf.header.formats]
            if ranges and self.indexed:
                seen: Set[RecordKey] = set()
                for rng in ranges:
                    if rng.chrom not in vf.header.contigs:
                        continue
                    if rng.start is None:
                        rows = vf.fetch(rng.chrom)
                    else:
                        rows = vf.fetch(rng.chrom, rng.start - 1, rng.end)
                    for rec in self._convert(rows, studies, present):
                        if rec.key in seen:
                            continue
                        seen.add(rec.key)
                        yield rec
            else:
                yield from self._convert(vf, studies, present)

    def _convert(
        self, rows: Iterator[pysam.VariantRecord], studies: List[str], present: List[str]
    ) -> Iterator[VariantRecord]:
        for n, row in enumerate(rows, start=1):
            if n % 10000 == 0 and self.shutdown_checker and self.shutdown_checker():
                raise QueryCancelledError(
                    f"Read of {self.path} cancelled after {n} variants"
                )
            alt = row.alts[0] if row.alts else "."
            rsid = row.id if row.id and row.id != "." else None
            for study in studies:
                sample = row.samples[study]
                values = {SUMMARY_FIELDS[k]: _first(sample.get(k)) for k in present}
                yield VariantRecord(
                    chrom=row.chrom,
                    pos=row.pos,
                    ref=row.ref,
                    alt=alt,
                    rsid=rsid,
                    study=study,
                    **values,
                )

    def read(self, ranges: Optional[Sequence[GenomicRange]] = None) -> RecordSet:
        """Materialise records (all, or those fetched for ``ranges``)."""
        record_set = RecordSet(self.iter_records(ranges))
        if self.logger.isEnabledFor(logging.DEBUG):
            scope = f"{len(ranges)} range(s)" if ranges else "full file"
            self.logger.debug(
                f"Read {len(record_set)} records from {self.path.name} ({scope})"
            )
        if self.memory_monitor is not None:
            self.memory_monitor.warn_for_large_result(len(record_set))
            self.memory_monitor.check_memory_and_warn("variant read")
        return record_set
