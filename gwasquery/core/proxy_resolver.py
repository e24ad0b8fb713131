"""LD proxy search and allele alignment for identifiers missing from a source."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import QueryCancelledError
from .ld_reference import LDReference, LDTag
from .planner import IdentifierFilter, QueryFilter, QueryPlanner
from .records import RecordSet, VariantRecord
from .rsid_index import rsid_to_key

__all__ = ["ProxyMode", "ProxyState", "ProxyResult", "ProxyResolver", "align_proxy"]


class ProxyMode(str, Enum):
    NO = "no"
    YES = "yes"
    ONLY = "only"


class ProxyState(str, Enum):
    PRESENT = "present"
    SEARCHING = "searching"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ProxyResult:
    """Outcome for one requested identifier and one study record.

    Attributes:
        requested: Identifier the caller asked for
        resolved: Identifier whose record supplied the data
        r2: Squared correlation between the two (1.0 for direct hits)
        sign: Correlation sign (+1 for direct hits)
        record: Record expressed on the requested variant's allele scale
    """

    requested: str
    resolved: str
    r2: float
    sign: int
    record: VariantRecord

    @property
    def is_proxy(self) -> bool:
        return self.requested != self.resolved


def align_proxy(
    record: VariantRecord, tag: LDTag, requested: str
) -> Optional[VariantRecord]:
    """Re-express a proxy record on the requested variant's alleles.

    With in-phase alleles the proxy's effect allele is compared with the
    tag alleles: in phase with the requested allele 1 keeps the estimate,
    in phase with allele 2 flips it, and any other combination cannot be
    aligned (None). The output effect allele is then the requested
    variant's allele 1. Without phase information a negative correlation
    sign flips.

    A flip negates the effect, takes 1 - frequency and exchanges the
    effect and non-effect alleles.

    Example:
        >>> tag = LDTag("rs1", "rs2", 0.9, sign=-1)
        >>> out = align_proxy(rec, tag, "rs1")
        >>> (out.es, out.af, out.alt) == (-rec.es, 1 - rec.af, rec.ref)
        True
    """
    if tag.phase is not None:
        phase = tag.phase
        if (record.alt, record.ref) == (phase.tag_a1, phase.tag_a2):
            flip = False
        elif (record.alt, record.ref) == (phase.tag_a2, phase.tag_a1):
            flip = True
        else:
            return None
        alt, ref = phase.source_a1, phase.source_a2
    else:
        flip = tag.sign < 0
        alt, ref = (record.ref, record.alt) if flip else (record.alt, record.ref)

    es, af = record.es, record.af
    if flip:
        es = -es if es is not None else None
        af = 1.0 - af if af is not None else None

    source_rsid = record.source_rsid
    if record.rsid != requested:
        source_rsid = record.rsid
    return replace(
        record, rsid=requested, alt=alt, ref=ref, es=es, af=af, source_rsid=source_rsid
    )


class ProxyResolver:
    """Substitute correlated variants for identifiers absent from a source.

    Per identifier: Present (found directly; in "yes" mode that is final),
    Searching (walk the reference's tags best-first), then Resolved (first
    tag present in the source and alignable) or Unresolved (dropped, not an
    error). Identifiers are resolved independently, optionally in threads;
    workers only read the prefetched candidate records.
    """

    def __init__(
        self,
        planner: QueryPlanner,
        reference: LDReference,
        min_r2: float = 0.8,
        max_workers: int = 1,
        logger: Optional[logging.Logger] = None,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ):
        if not 0.0 <= min_r2 <= 1.0:
            raise ValueError(f"min_r2 must be within [0, 1], got {min_r2}")
        self.planner = planner
        self.reference = reference
        self.min_r2 = min_r2
        self.max_workers = max(1, max_workers)
        self.logger = logger or logging.getLogger(__name__)
        self.shutdown_checker = shutdown_checker

    def resolve(
        self,
        rsids: Sequence[str],
        mode: ProxyMode = ProxyMode.YES,
        base_plan: Sequence[QueryFilter] = (),
    ) -> List[ProxyResult]:
        """Resolve ``rsids`` against the planner's source.

        Args:
            rsids: Requested identifiers
            mode: "no" direct hits only, "yes" proxies for missing identifiers,
                "only" proxies for every identifier
            base_plan: Filters the request was made with. Its identifier
                filter supplies the index settings; the other filters are
                re-applied to proxy candidates so results stay within them.

        Returns:
            Results in request order; unresolved identifiers are absent
        """
        mode = ProxyMode(mode)
        requested = list(dict.fromkeys(r for r in rsids if r))
        id_template, others = _split_plan(base_plan)

        direct = self.planner.execute(
            [*others, _with_rsids(id_template, requested)]
        )
        by_rsid = _group_by_rsid(direct)
        states: Dict[str, ProxyState] = {
            r: ProxyState.PRESENT if _match_key(r) in by_rsid else ProxyState.SEARCHING
            for r in requested
        }

        results: Dict[str, List[ProxyResult]] = {}
        if mode != ProxyMode.ONLY:
            for rsid in requested:
                if states[rsid] == ProxyState.PRESENT:
                    results[rsid] = [
                        ProxyResult(rsid, rsid, 1.0, 1, rec)
                        for rec in by_rsid[_match_key(rsid)]
                    ]
        if mode == ProxyMode.NO:
            return [res for r in requested for res in results.get(r, [])]

        searching = [
            r
            for r in requested
            if mode == ProxyMode.ONLY or states[r] == ProxyState.SEARCHING
        ]
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(
                f"Proxy search ({mode.value}): {len(searching)} of {len(requested)} "
                f"identifier(s), r2 >= {self.min_r2}"
            )

        if searching:
            tags = self.reference.tags_many(
                sorted({_match_key(r) for r in searching}), self.min_r2
            )
            candidates = sorted({t.tag for found in tags.values() for t in found})
            candidate_records: Dict[str, List[VariantRecord]] = {}
            if candidates:
                proxies = self.planner.execute(
                    [*others, _with_rsids(id_template, candidates)]
                )
                candidate_records = _group_by_rsid(proxies)

            def work(rsid: str) -> Tuple[str, List[ProxyResult]]:
                if self.shutdown_checker and self.shutdown_checker():
                    raise QueryCancelledError("Proxy resolution cancelled")
                return rsid, self._select(
                    rsid, tags.get(_match_key(rsid), []), candidate_records
                )

            if self.max_workers > 1 and len(searching) > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    outcomes = list(pool.map(work, searching))
            else:
                outcomes = [work(r) for r in searching]

            for rsid, found in outcomes:
                states[rsid] = ProxyState.RESOLVED if found else ProxyState.UNRESOLVED
                if found:
                    results[rsid] = found

        if self.logger.isEnabledFor(logging.INFO):
            counts = {s: 0 for s in ProxyState}
            for state in states.values():
                counts[state] += 1
            self.logger.info(
                "Proxy resolution: "
                + ", ".join(f"{s.value}={n}" for s, n in counts.items() if n)
            )
        return [res for r in requested for res in results.get(r, [])]

    def _select(
        self,
        rsid: str,
        tags: List[LDTag],
        candidate_records: Dict[str, List[VariantRecord]],
    ) -> List[ProxyResult]:
        for tag in tags:
            if _match_key(tag.tag) == _match_key(rsid):
                continue
            records = candidate_records.get(_match_key(tag.tag))
            if not records:
                continue
            aligned = [align_proxy(rec, tag, rsid) for rec in records]
            usable = [rec for rec in aligned if rec is not None]
            if not usable:
                if self.logger.isEnabledFor(logging.DEBUG):
                    self.logger.debug(
                        f"{rsid}: proxy {tag.tag} skipped, alleles do not match phase {tag.phase}"
                    )
                continue
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(
                    f"{rsid}: resolved to {tag.tag} (r2={tag.r2:.3f}, sign={tag.sign:+d})"
                )
            return [ProxyResult(rsid, tag.tag, tag.r2, tag.sign, rec) for rec in usable]
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"{rsid}: unresolved after {len(tags)} candidate(s)")
        return []


def _split_plan(
    plan: Sequence[QueryFilter],
) -> Tuple[Optional[IdentifierFilter], List[QueryFilter]]:
    template: Optional[IdentifierFilter] = None
    others: List[QueryFilter] = []
    for flt in plan:
        if isinstance(flt, IdentifierFilter):
            template = flt
        else:
            others.append(flt)
    return template, others


def _with_rsids(
    template: Optional[IdentifierFilter], rsids: Sequence[str]
) -> IdentifierFilter:
    if template is None:
        return IdentifierFilter(tuple(rsids))
    return replace(template, rsids=tuple(rsids))


def _group_by_rsid(records: RecordSet) -> Dict[str, List[VariantRecord]]:
    grouped: Dict[str, List[VariantRecord]] = {}
    for rec in records:
        if rec.rsid:
            grouped.setdefault(_match_key(rec.rsid), []).append(rec)
    return grouped


def _match_key(rsid: str) -> str:
    """Identifier as the planner matches it: lower-case "rs<digits>", else literal."""
    key = rsid_to_key(rsid)
    return f"rs{key}" if key is not None else rsid
