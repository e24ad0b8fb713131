"""Sparse threshold index: -log10 p-value to (chrom, pos)."""

import logging
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from tqdm import tqdm

from .chrompos import ChromPosFilter
from .errors import BuildError, ConfigurationError, ThresholdExceededError
from .records import GenomicRange, RecordSet, pval_to_lp
from ..utils.sqlite_utils import (
    atomic_database,
    connect_readonly,
    read_meta,
    require_tables,
)

if TYPE_CHECKING:
    from ..io.vcf_reader import VariantStore

__all__ = ["ThresholdIndex"]

_INSERT_BATCH = 10000


class ThresholdIndex:
    """Index of the loci whose best study p-value is at or below a cutoff.

    Loci above the build cutoff are not stored; queries less stringent than
    the cutoff raise ThresholdExceededError.
    """

    TABLE = "pval_to_coord"
    META = "index_meta"

    def __init__(
        self, path: Path, max_pval: float, logger: Optional[logging.Logger] = None
    ):
        self.path = Path(path)
        self.max_pval = max_pval
        self.logger = logger or logging.getLogger(__name__)
        self.chrompos = ChromPosFilter(self.logger)

    @classmethod
    def open(cls, path: Path, logger: Optional[logging.Logger] = None) -> "ThresholdIndex":
        """Open an existing index and read its build cutoff.

        Raises:
            ConfigurationError: missing file, schema or cutoff
        """
        require_tables(Path(path), [cls.TABLE, cls.META])
        raw = read_meta(Path(path), cls.META, "max_pval")
        try:
            max_pval = float(raw)
        except ValueError:
            raise ConfigurationError(f"{path} records an invalid max_pval '{raw}'")
        return cls(path, max_pval, logger)

    @classmethod
    def build(
        cls,
        store: "VariantStore",
        path: Path,
        max_pval: float,
        logger: Optional[logging.Logger] = None,
        show_progress: bool = False,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ) -> "ThresholdIndex":
        """Index the variant lines of ``store`` with any study at p <= max_pval.

        Each variant line is stored once with its strongest (largest) LP.

        Raises:
            ValueError: max_pval outside (0, 1]
            BuildError: no record passes the cutoff, or the build was cancelled
        """
        logger = logger or logging.getLogger(__name__)
        min_lp = pval_to_lp(max_pval)
        if logger.isEnabledFor(logging.INFO):
            logger.info(
                f"Building threshold index for {store.path} at p <= {max_pval:g} "
                f"(LP >= {min_lp:.3f}) -> {path}"
            )

        indexed = 0
        with atomic_database(path) as conn:
            conn.execute(
                f"CREATE TABLE {cls.TABLE} (lp REAL NOT NULL, chrom TEXT NOT NULL, "
                "coord INTEGER NOT NULL)"
            )
            conn.execute(f"CREATE TABLE {cls.META} (key TEXT PRIMARY KEY, value TEXT)")
            conn.execute(
                f"INSERT INTO {cls.META} VALUES ('max_pval', ?)", (repr(max_pval),)
            )

            batch: List[Tuple[float, str, int]] = []
            site = None
            site_lp: Optional[float] = None

            def flush_site() -> None:
                nonlocal indexed
                if site is not None and site_lp is not None and site_lp >= min_lp:
                    batch.append((site_lp, site[0], site[1]))
                    indexed += 1

            records = tqdm(
                store.iter_records(),
                desc="Indexing p-values",
                unit="record",
                disable=not show_progress,
                leave=False,
            )
            for rec in records:
                rec_site = (rec.chrom, rec.pos, rec.ref, rec.alt)
                if rec_site != site:
                    flush_site()
                    if shutdown_checker and shutdown_checker():
                        raise BuildError("Threshold index build cancelled")
                    site, site_lp = rec_site, None
                    if len(batch) >= _INSERT_BATCH:
                        conn.executemany(
                            f"INSERT INTO {cls.TABLE} VALUES (?, ?, ?)", batch
                        )
                        batch.clear()
                if rec.lp is not None and (site_lp is None or rec.lp > site_lp):
                    site_lp = rec.lp
            flush_site()
            if batch:
                conn.executemany(f"INSERT INTO {cls.TABLE} VALUES (?, ?, ?)", batch)

            if indexed == 0:
                raise BuildError(
                    f"No record in {store.path} reaches p <= {max_pval:g}; "
                    "refusing to write an empty threshold index"
                )
            conn.execute(f"CREATE INDEX idx_lp ON {cls.TABLE} (lp)")

        if logger.isEnabledFor(logging.INFO):
            logger.info(f"Threshold index complete: {indexed} variants indexed")
        return cls(path, max_pval, logger)

    def check_coverage(self, pval: float) -> None:
        """Raise ThresholdExceededError when ``pval`` is looser than the cutoff."""
        if pval > self.max_pval:
            raise ThresholdExceededError(
                f"Requested p <= {pval:g} but {self.path.name} only covers "
                f"p <= {self.max_pval:g}"
            )

    def loci(self, pval: float) -> List[GenomicRange]:
        """Distinct loci holding a record at p <= ``pval``."""
        self.check_coverage(pval)
        min_lp = pval_to_lp(pval)
        with closing(connect_readonly(self.path)) as conn:
            rows = conn.execute(
                f"SELECT DISTINCT chrom, coord FROM {self.TABLE} WHERE lp >= ?",
                (min_lp,),
            ).fetchall()
        return [GenomicRange.point(chrom, coord) for chrom, coord in rows]

    def query(self, pval: float, source: Union[RecordSet, "VariantStore"]) -> RecordSet:
        """Records of ``source`` with p <= ``pval``.

        Raises:
            ThresholdExceededError: ``pval`` exceeds the build cutoff
        """
        ranges = self.loci(pval)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Threshold index: {len(ranges)} locus/loci at p <= {pval:g}"
            )
        if not ranges:
            return RecordSet()
        min_lp = pval_to_lp(pval)
        records = source if isinstance(source, RecordSet) else source.read(ranges)
        hits = self.chrompos.apply(records, ranges)
        return hits.where(lambda r: r.lp is not None and r.lp >= min_lp)
