"""Access-path selection and AND-chaining of query filters."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Tuple, Union

from .accelerator import BcftoolsAccelerator
from .chrompos import ChromPosFilter
from .errors import (
    ConfigurationError,
    DelegationError,
    QueryCancelledError,
    ThresholdExceededError,
)
from .pval_index import ThresholdIndex
from .records import GenomicRange, RecordSet, pval_to_lp
from .rsid_index import IdentifierIndex, rsid_to_key
from ..utils.tools import Capabilities

if TYPE_CHECKING:
    from ..io.vcf_reader import VariantStore

__all__ = [
    "AccessPath",
    "RangeFilter",
    "IdentifierFilter",
    "ThresholdFilter",
    "QueryFilter",
    "QueryPlanner",
]


class AccessPath(str, Enum):
    CHROMPOS = "chrompos"
    INDEX = "index"
    ACCELERATOR = "accelerator"
    SCAN = "scan"


@dataclass(frozen=True)
class RangeFilter:
    """Keep records inside any of ``ranges`` (inclusive)."""

    ranges: Tuple[GenomicRange, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "ranges", tuple(self.ranges))


@dataclass(frozen=True)
class IdentifierFilter:
    """Keep records whose identifier is one of ``rsids``.

    Attributes:
        rsids: Requested identifiers
        index_path: Prebuilt identifier index, preferred when given
        access: Pin one access path; failures of a pinned path are surfaced
    """

    rsids: Tuple[str, ...]
    index_path: Optional[Path] = None
    access: Optional[AccessPath] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rsids", tuple(self.rsids))


@dataclass(frozen=True)
class ThresholdFilter:
    """Keep records with p-value <= ``pval``.

    Attributes:
        pval: Significance threshold on the p-value scale
        index_path: Prebuilt threshold index, preferred when given
        access: Pin one access path; failures of a pinned path are surfaced
    """

    pval: float
    index_path: Optional[Path] = None
    access: Optional[AccessPath] = None

    def __post_init__(self) -> None:
        pval_to_lp(self.pval)


QueryFilter = Union[RangeFilter, IdentifierFilter, ThresholdFilter]

# Result so far: None while no filter has materialised the source yet
_Current = Optional[RecordSet]


class QueryPlanner:
    """Evaluate an ordered plan of filters against one immutable source.

    Each filter runs on the result of the previous one, so a plan is the
    logical AND of its filters. Per filter the cheapest available access
    path is chosen: ChromPos for ranges; side index, bcftools accelerator,
    then full scan for identifiers and thresholds.
    """

    def __init__(
        self,
        store: "VariantStore",
        capabilities: Capabilities,
        accelerator: Optional[BcftoolsAccelerator] = None,
        logger: Optional[logging.Logger] = None,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ):
        self.store = store
        self.capabilities = capabilities
        self.accelerator = accelerator if capabilities.accelerator else None
        self.logger = logger or logging.getLogger(__name__)
        self.chrompos = ChromPosFilter(self.logger)
        self.shutdown_checker = shutdown_checker

    def execute(self, plan: Sequence[QueryFilter]) -> RecordSet:
        """Run ``plan`` and return the records satisfying every filter.

        An empty plan returns the whole source.

        Raises:
            ConfigurationError: a pinned access path is unavailable
            ThresholdExceededError: a pinned threshold index cannot cover the query
            DelegationError: a pinned accelerator failed
            QueryCancelledError: the shutdown checker requested a stop
        """
        current: _Current = None
        for step, flt in enumerate(plan, start=1):
            if self.shutdown_checker and self.shutdown_checker():
                raise QueryCancelledError(f"Query cancelled before step {step}")
            if isinstance(flt, RangeFilter):
                self._log_path(step, _describe(flt), AccessPath.CHROMPOS)
                current = self._apply_range(flt, current)
            elif isinstance(flt, IdentifierFilter):
                current = self._run_paths(step, flt, current, self._identifier_path)
            elif isinstance(flt, ThresholdFilter):
                current = self._run_paths(step, flt, current, self._threshold_path)
            else:
                raise TypeError(f"Unsupported filter {flt!r}")
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(f"Step {step}: {len(current)} record(s) remain")
            if not current:
                break
        if current is None:
            self._log_path(0, "full source", AccessPath.SCAN)
            current = self.store.read()
        return current

    def candidate_paths(self, flt: QueryFilter, current: _Current) -> List[AccessPath]:
        """Access paths to try for ``flt``, most preferred first."""
        if isinstance(flt, RangeFilter):
            return [AccessPath.CHROMPOS]
        if flt.access is not None:
            self._check_pinned(flt)
            return [flt.access]
        paths: List[AccessPath] = []
        if flt.index_path is not None:
            paths.append(AccessPath.INDEX)
        # bcftools only reads the source file, not an intermediate result
        if self.accelerator is not None and current is None:
            paths.append(AccessPath.ACCELERATOR)
        paths.append(AccessPath.SCAN)
        return paths

    def _check_pinned(self, flt: Union[IdentifierFilter, ThresholdFilter]) -> None:
        kind = _describe(flt)
        if flt.access == AccessPath.INDEX and flt.index_path is None:
            raise ConfigurationError(f"{kind}: index access requested without an index path")
        if flt.access == AccessPath.ACCELERATOR and self.accelerator is None:
            raise ConfigurationError(
                f"{kind}: accelerator requested but bcftools is not available "
                f"on this system ({self.capabilities.system or 'unknown'})"
            )
        if flt.access == AccessPath.CHROMPOS:
            raise ConfigurationError(f"{kind}: ChromPos access only applies to ranges")

    def _run_paths(
        self,
        step: int,
        flt: Union[IdentifierFilter, ThresholdFilter],
        current: _Current,
        runner: Callable[[AccessPath, QueryFilter, _Current], RecordSet],
    ) -> RecordSet:
        paths = self.candidate_paths(flt, current)
        pinned = flt.access is not None
        for i, path in enumerate(paths):
            self._log_path(step, _describe(flt), path)
            try:
                return runner(path, flt, current)
            except (DelegationError, ThresholdExceededError) as e:
                if pinned or i == len(paths) - 1:
                    raise
                if self.logger.isEnabledFor(logging.WARNING):
                    self.logger.warning(
                        f"{_describe(flt)}: {path.value} path failed ({e}); "
                        f"falling back to {paths[i + 1].value}"
                    )
        raise ConfigurationError(f"No access path available for {_describe(flt)}")

    def _apply_range(self, flt: RangeFilter, current: _Current) -> RecordSet:
        source = current if current is not None else self.store.read(flt.ranges)
        return self.chrompos.apply(source, flt.ranges)

    def _identifier_path(
        self, path: AccessPath, flt: IdentifierFilter, current: _Current
    ) -> RecordSet:
        if path == AccessPath.INDEX:
            index = IdentifierIndex.open(flt.index_path, self.logger)
            return index.query(flt.rsids, current if current is not None else self.store)
        if path == AccessPath.ACCELERATOR:
            hits = self.accelerator.identifiers(self.store.path, flt.rsids)
            return hits if current is None else current.intersect(hits)
        wanted = {k for k in (rsid_to_key(r) for r in flt.rsids) if k is not None}
        literal = set(flt.rsids)
        source = current if current is not None else self.store.read()
        return source.where(
            lambda r: r.rsid is not None
            and (r.rsid in literal or rsid_to_key(r.rsid) in wanted)
        )

    def _threshold_path(
        self, path: AccessPath, flt: ThresholdFilter, current: _Current
    ) -> RecordSet:
        if path == AccessPath.INDEX:
            index = ThresholdIndex.open(flt.index_path, self.logger)
            return index.query(flt.pval, current if current is not None else self.store)
        if path == AccessPath.ACCELERATOR:
            hits = self.accelerator.threshold(self.store.path, flt.pval)
            return hits if current is None else current.intersect(hits)
        min_lp = pval_to_lp(flt.pval)
        source = current if current is not None else self.store.read()
        return source.where(lambda r: r.lp is not None and r.lp >= min_lp)

    def _log_path(self, step: int, what: str, path: AccessPath) -> None:
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(f"{what}: using {path.value} access path (step {step})")


def _describe(flt: QueryFilter) -> str:
    if isinstance(flt, RangeFilter):
        return f"Range filter ({len(flt.ranges)} range(s))"
    if isinstance(flt, IdentifierFilter):
        return f"Identifier filter ({len(flt.rsids)} identifier(s))"
    return f"Threshold filter (p <= {flt.pval:g})"
