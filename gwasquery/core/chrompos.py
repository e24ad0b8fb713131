"""Range intersection over position-sorted record sets."""

import logging
from typing import Iterable, Optional, Set

import numpy as np

from .records import GenomicRange, RecordSet

__all__ = ["ChromPosFilter"]


class ChromPosFilter:
    """Select records falling inside any of a batch of genomic ranges."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def apply(self, record_set: RecordSet, ranges: Iterable[GenomicRange]) -> RecordSet:
        """Return records whose (chrom, pos) lies within any range, inclusive.

        Each range costs two binary searches on the chromosome's position
        array. Overlapping ranges contribute each record once and the result
        keeps the input set's order.

        Args:
            record_set: Position-sorted records to filter
            ranges: Ranges to intersect with; points use start == end

        Returns:
            RecordSet with the matching records (possibly empty)

        Example:
            >>> flt = ChromPosFilter()
            >>> hits = flt.apply(records, [parse_chrompos("1:1097291-1099437")])
            >>> len(hits)
            2
        """
        selected: Set[int] = set()
        n_ranges = 0
        for rng in ranges:
            n_ranges += 1
            block = record_set.block(rng.chrom)
            if block is None:
                continue
            lo, hi = block
            if rng.start is None or rng.end is None:
                selected.update(range(lo, hi))
                continue
            positions = record_set.positions(lo, hi)
            left = int(np.searchsorted(positions, rng.start, side="left"))
            right = int(np.searchsorted(positions, rng.end, side="right"))
            selected.update(range(lo + left, lo + right))

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"ChromPos filter: {n_ranges} range(s) matched {len(selected)} "
                f"of {len(record_set)} records"
            )
        return record_set.select(selected)
