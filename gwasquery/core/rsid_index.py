"""Sparse identifier index: numeric rsid key to (chrom, pos)."""

import logging
import re
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Set, Tuple, Union

from tqdm import tqdm

from .chrompos import ChromPosFilter
from .errors import BuildError, NotFoundError
from .records import GenomicRange, RecordSet
from ..utils.sqlite_utils import atomic_database, chunked, connect_readonly, require_tables

if TYPE_CHECKING:
    from ..io.vcf_reader import VariantStore

__all__ = ["rsid_to_key", "IdentifierIndex"]

_RSID_RE = re.compile(r"^rs(\d+)$", re.IGNORECASE)
_INSERT_BATCH = 10000


def rsid_to_key(rsid: Optional[str]) -> Optional[int]:
    """Numeric key of an "rs<digits>" identifier, or None if it does not conform.

    Example:
        >>> rsid_to_key("rs12565286")
        12565286
        >>> rsid_to_key("1:721290_G_C") is None
        True
    """
    if not rsid:
        return None
    match = _RSID_RE.match(rsid.strip())
    if match is None:
        return None
    return int(match.group(1))


class IdentifierIndex:
    """Persisted rsid -> locus table used to avoid scanning for identifiers.

    Only records with conforming identifiers are indexed; the rest remain
    reachable by range or full scan.
    """

    TABLE = "rsid_to_coord"

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)
        self.chrompos = ChromPosFilter(self.logger)

    @classmethod
    def open(cls, path: Path, logger: Optional[logging.Logger] = None) -> "IdentifierIndex":
        """Open an existing index, validating its schema.

        Raises:
            ConfigurationError: missing file or unexpected schema
        """
        require_tables(Path(path), [cls.TABLE])
        return cls(path, logger)

    @classmethod
    def build(
        cls,
        store: "VariantStore",
        path: Path,
        logger: Optional[logging.Logger] = None,
        show_progress: bool = False,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ) -> "IdentifierIndex":
        """Index every conforming identifier of ``store`` into ``path``.

        Raises:
            BuildError: no conforming identifier, or the build was cancelled
        """
        logger = logger or logging.getLogger(__name__)
        if logger.isEnabledFor(logging.INFO):
            logger.info(f"Building identifier index for {store.path} -> {path}")

        indexed = 0
        skipped = 0
        with atomic_database(path) as conn:
            conn.execute(
                f"CREATE TABLE {cls.TABLE} (rsid INTEGER NOT NULL, chrom TEXT NOT NULL, "
                "coord INTEGER NOT NULL)"
            )
            batch: List[Tuple[int, str, int]] = []
            last_site = None
            records = tqdm(
                store.iter_records(),
                desc="Indexing identifiers",
                unit="record",
                disable=not show_progress,
                leave=False,
            )
            for rec in records:
                site = (rec.chrom, rec.pos, rec.ref, rec.alt)
                if site == last_site:
                    continue
                last_site = site
                if shutdown_checker and shutdown_checker():
                    raise BuildError("Identifier index build cancelled")
                key = rsid_to_key(rec.rsid)
                if key is None:
                    skipped += 1
                    continue
                batch.append((key, rec.chrom, rec.pos))
                indexed += 1
                if len(batch) >= _INSERT_BATCH:
                    conn.executemany(f"INSERT INTO {cls.TABLE} VALUES (?, ?, ?)", batch)
                    batch = []
            if batch:
                conn.executemany(f"INSERT INTO {cls.TABLE} VALUES (?, ?, ?)", batch)
            if indexed == 0:
                raise BuildError(
                    f"No conforming 'rs' identifiers in {store.path}; "
                    "nothing to index"
                )
            conn.execute(f"CREATE INDEX idx_rsid ON {cls.TABLE} (rsid)")

        if logger.isEnabledFor(logging.INFO):
            logger.info(
                f"Identifier index complete: {indexed} variants indexed, "
                f"{skipped} without a conforming identifier"
            )
        return cls(path, logger)

    def locate(self, rsid: str) -> List[GenomicRange]:
        """Loci of one identifier.

        Raises:
            NotFoundError: the identifier is not conforming or not indexed
        """
        key = rsid_to_key(rsid)
        found = self._loci_for_keys([key]) if key is not None else []
        if not found:
            raise NotFoundError(f"{rsid} is not in identifier index {self.path}")
        return found

    def loci(self, rsids: Iterable[str]) -> List[GenomicRange]:
        """Loci for a batch of identifiers; unknown identifiers contribute none."""
        return self._loci_for_keys(
            {k for k in (rsid_to_key(r) for r in rsids) if k is not None}
        )

    def _loci_for_keys(self, keys: Iterable[int]) -> List[GenomicRange]:
        found: List[GenomicRange] = []
        with closing(connect_readonly(self.path)) as conn:
            for batch in chunked(sorted(keys)):
                marks = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT DISTINCT chrom, coord FROM {self.TABLE} "
                    f"WHERE rsid IN ({marks})",
                    batch,
                ).fetchall()
                found.extend(GenomicRange.point(chrom, coord) for chrom, coord in rows)
        return found

    def query(
        self, rsids: Iterable[str], source: Union[RecordSet, "VariantStore"]
    ) -> RecordSet:
        """Records of ``source`` carrying one of ``rsids``.

        ``source`` is either an already filtered RecordSet or the variant
        store, in which case only the located regions are read.
        """
        wanted: Set[int] = {k for k in (rsid_to_key(r) for r in rsids) if k is not None}
        ranges = self._loci_for_keys(wanted)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Identifier index: {len(wanted)} key(s) located at {len(ranges)} locus/loci"
            )
        if not ranges:
            return RecordSet()
        records = source if isinstance(source, RecordSet) else source.read(ranges)
        hits = self.chrompos.apply(records, ranges)
        return hits.where(lambda r: rsid_to_key(r.rsid) in wanted)
