"""LD references: live plink panel and precomputed sqlite tag table."""

import logging
import tempfile
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import (
    BuildError,
    ConfigurationError,
    DelegationError,
    NotFoundError,
    ThresholdExceededError,
)
from ..utils.sqlite_utils import (
    atomic_database,
    chunked,
    connect_readonly,
    read_meta,
    require_tables,
)
from ..utils.tools import run_tool

__all__ = [
    "PhaseAlleles",
    "LDTag",
    "LDReference",
    "PlinkRunner",
    "PanelReference",
    "TagTable",
    "parse_ld_table",
    "read_bim",
]


@dataclass(frozen=True)
class PhaseAlleles:
    """In-phase allele pairs reported by plink ``--r in-phase``.

    ``source_a1`` sits on the same haplotypes as ``tag_a1``, and
    ``source_a2`` with ``tag_a2``.
    """

    source_a1: str
    tag_a1: str
    source_a2: str
    tag_a2: str

    @classmethod
    def parse(cls, text: str) -> Optional["PhaseAlleles"]:
        """Parse "AG/CT"; anything but two single-base pairs (indels) gives None."""
        pairs = text.split("/")
        if len(pairs) != 2 or any(len(p) != 2 for p in pairs):
            return None
        return cls(pairs[0][0], pairs[0][1], pairs[1][0], pairs[1][1])

    def reversed(self) -> "PhaseAlleles":
        return PhaseAlleles(self.tag_a1, self.source_a1, self.tag_a2, self.source_a2)

    def __str__(self) -> str:
        return f"{self.source_a1}{self.tag_a1}/{self.source_a2}{self.tag_a2}"


@dataclass(frozen=True)
class LDTag:
    """One tag variant correlated with a source variant.

    Attributes:
        source: Identifier being tagged
        tag: Correlated identifier
        r2: Squared correlation
        sign: +1 or -1, sign of the allelic correlation
        phase: In-phase alleles when the reference reports them
    """

    source: str
    tag: str
    r2: float
    sign: int = 1
    phase: Optional[PhaseAlleles] = None

    def reversed(self) -> "LDTag":
        phase = self.phase.reversed() if self.phase is not None else None
        return LDTag(self.tag, self.source, self.r2, self.sign, phase)


def _rank(tags: Iterable[LDTag]) -> List[LDTag]:
    # Stable: ties keep the order the reference reported them in
    return sorted(tags, key=lambda t: -t.r2)


class LDReference(ABC):
    """Source of LD tags for requested identifiers."""

    @abstractmethod
    def tags_many(
        self, rsids: Sequence[str], min_r2: float
    ) -> Dict[str, List[LDTag]]:
        """Tags with r2 >= ``min_r2`` per identifier, best first.

        Identifiers without any qualifying tag are absent from the mapping.
        """

    def tags(self, rsid: str, min_r2: float) -> List[LDTag]:
        """Tags of a single identifier.

        Raises:
            NotFoundError: no tag meets ``min_r2``
        """
        found = self.tags_many([rsid], min_r2).get(rsid)
        if not found:
            raise NotFoundError(f"No LD tag with r2 >= {min_r2} for {rsid}")
        return found


def read_bim(bfile: Path) -> List[Tuple[str, str, str]]:
    """(identifier, allele 1, allele 2) for every variant of a plink fileset."""
    bim = Path(str(bfile) + ".bim")
    if not bim.exists():
        raise ConfigurationError(f"LD reference panel not found: {bim}")
    variants: List[Tuple[str, str, str]] = []
    with open(bim) as fh:
        for line_number, line in enumerate(fh, start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 6:
                raise ConfigurationError(
                    f"{bim} line {line_number}: expected 6 columns, found {len(parts)}"
                )
            variants.append((parts[1], parts[4], parts[5]))
    return variants


def parse_ld_table(path: Path) -> List[LDTag]:
    """Parse a plink ``.ld`` table produced by ``--r`` or ``--r2``.

    ``--r`` tables carry the sign in R; ``--r2`` tables are reported as
    positive. Rows whose PHASE column is not a pair of single-base alleles
    (indels) are dropped.

    Raises:
        DelegationError: the table has no plink header or a malformed row
    """
    tags: List[LDTag] = []
    with open(path) as fh:
        header = fh.readline().split()
        if "SNP_A" not in header or "SNP_B" not in header:
            raise DelegationError(f"{path} is not a plink LD table")
        if "R" in header:
            value_col, squared = header.index("R"), False
        elif "R2" in header:
            value_col, squared = header.index("R2"), True
        else:
            raise DelegationError(f"{path} has neither R nor R2 column")
        a_col, b_col = header.index("SNP_A"), header.index("SNP_B")
        phase_col = header.index("PHASE") if "PHASE" in header else None

        for line_number, line in enumerate(fh, start=2):
            parts = line.split()
            if not parts:
                continue
            if len(parts) != len(header):
                raise DelegationError(
                    f"{path} line {line_number}: expected {len(header)} fields, "
                    f"found {len(parts)}"
                )
            try:
                value = float(parts[value_col])
            except ValueError:
                raise DelegationError(
                    f"{path} line {line_number}: non-numeric LD value '{parts[value_col]}'"
                )
            phase = None
            if phase_col is not None:
                phase = PhaseAlleles.parse(parts[phase_col])
                if phase is None:
                    continue
            r2 = value if squared else value * value
            sign = 1 if squared or value >= 0 else -1
            tags.append(LDTag(parts[a_col], parts[b_col], r2, sign, phase))
    return tags


class PlinkRunner:
    """Run plink 1.9 LD computations as blocking subprocesses."""

    def __init__(self, plink: str, logger: Optional[logging.Logger] = None):
        self.plink = plink
        self.logger = logger or logging.getLogger(__name__)

    def run_ld(self, args: Sequence[str], out_prefix: Path) -> Path:
        """Run plink with ``args`` and return the produced ``.ld`` table."""
        run_tool([self.plink, *args, "--out", str(out_prefix)], self.logger)
        ld_path = Path(str(out_prefix) + ".ld")
        if not ld_path.exists():
            raise DelegationError(f"plink did not write {ld_path}")
        return ld_path


class PanelReference(LDReference):
    """Compute LD on demand against a plink reference panel.

    One plink call covers a whole batch of identifiers; each call is
    O(pairs in window), so this backend suits small candidate sets.
    """

    def __init__(
        self,
        bfile: Path,
        runner: Optional[PlinkRunner],
        window_kb: int = 5000,
        window_nsnp: int = 5000,
        threads: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        if runner is None:
            raise ConfigurationError(
                "LD proxies from a reference panel need plink; configure its path"
            )
        self.bfile = Path(bfile)
        self.runner = runner
        self.window_kb = window_kb
        self.window_nsnp = window_nsnp
        self.threads = threads
        self.logger = logger or logging.getLogger(__name__)
        self._panel_ids: Optional[Set[str]] = None

    def panel_ids(self) -> Set[str]:
        if self._panel_ids is None:
            self._panel_ids = {vid for vid, _, _ in read_bim(self.bfile)}
        return self._panel_ids

    def tags_many(
        self, rsids: Sequence[str], min_r2: float
    ) -> Dict[str, List[LDTag]]:
        targets = sorted(set(rsids) & self.panel_ids())
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(
                f"Computing LD for {len(targets)} of {len(set(rsids))} identifier(s) "
                f"in panel {self.bfile.name}"
            )
        if not targets:
            return {}

        with tempfile.TemporaryDirectory(prefix="gwasquery_ld_") as tmp:
            snp_list = Path(tmp) / "targets.txt"
            snp_list.write_text("\n".join(targets) + "\n")
            ld_path = self.runner.run_ld(
                [
                    "--bfile", str(self.bfile),
                    "--r", "in-phase",
                    "--ld-snp-list", str(snp_list),
                    "--ld-window-kb", str(self.window_kb),
                    "--ld-window", str(self.window_nsnp),
                    "--ld-window-r2", str(min_r2),
                    "--threads", str(self.threads),
                ],
                Path(tmp) / "proxies",
            )
            rows = parse_ld_table(ld_path)

        wanted = set(targets)
        grouped: Dict[str, List[LDTag]] = {}
        for tag in rows:
            if tag.source not in wanted or tag.source == tag.tag or tag.r2 < min_r2:
                continue
            grouped.setdefault(tag.source, []).append(tag)
        return {src: _rank(found) for src, found in grouped.items()}


class TagTable(LDReference):
    """Precomputed source -> ranked tag list, persisted in sqlite.

    Lookups are an indexed equality search on the source identifier, which
    turns proxy search into an index lookup instead of a panel computation.
    """

    TABLE = "tags"
    META = "tag_meta"

    def __init__(self, path: Path, min_r2: float, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.min_r2 = min_r2
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def open(cls, path: Path, logger: Optional[logging.Logger] = None) -> "TagTable":
        require_tables(Path(path), [cls.TABLE, cls.META])
        raw = read_meta(Path(path), cls.META, "min_r2")
        try:
            min_r2 = float(raw)
        except ValueError:
            raise ConfigurationError(f"{path} records an invalid min_r2 '{raw}'")
        return cls(path, min_r2, logger)

    @classmethod
    def write(
        cls,
        path: Path,
        tags: Iterable[LDTag],
        min_r2: float,
        logger: Optional[logging.Logger] = None,
    ) -> "TagTable":
        """Persist ``tags`` meeting ``min_r2``, ranked per source.

        Raises:
            BuildError: no tag meets ``min_r2``
        """
        logger = logger or logging.getLogger(__name__)
        grouped: Dict[str, List[LDTag]] = {}
        for tag in tags:
            if tag.r2 >= min_r2 and tag.source != tag.tag:
                grouped.setdefault(tag.source, []).append(tag)
        if not grouped:
            raise BuildError(f"No variant pair reaches r2 >= {min_r2}; tag table would be empty")

        n_rows = 0
        with atomic_database(path) as conn:
            conn.execute(
                f"CREATE TABLE {cls.TABLE} (snp_a TEXT NOT NULL, snp_b TEXT NOT NULL, "
                "r2 REAL NOT NULL, sign INTEGER NOT NULL, phase TEXT)"
            )
            conn.execute(f"CREATE TABLE {cls.META} (key TEXT PRIMARY KEY, value TEXT)")
            conn.execute(f"INSERT INTO {cls.META} VALUES ('min_r2', ?)", (repr(min_r2),))
            for source in grouped:
                rows = [
                    (t.source, t.tag, t.r2, t.sign, str(t.phase) if t.phase else None)
                    for t in _rank(grouped[source])
                ]
                conn.executemany(f"INSERT INTO {cls.TABLE} VALUES (?, ?, ?, ?, ?)", rows)
                n_rows += len(rows)
            conn.execute(f"CREATE INDEX idx_snp_a ON {cls.TABLE} (snp_a)")

        if logger.isEnabledFor(logging.INFO):
            logger.info(
                f"Tag table written to {path}: {len(grouped)} source variants, "
                f"{n_rows} tags (r2 >= {min_r2})"
            )
        return cls(path, min_r2, logger)

    @classmethod
    def build(
        cls,
        bfile: Path,
        path: Path,
        runner: Optional[PlinkRunner],
        min_r2: float = 0.6,
        window_kb: int = 5000,
        window_nsnp: int = 5000,
        threads: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> "TagTable":
        """Compute pairwise LD across the SNPs of a panel and persist it.

        Indels are excluded from tagging. plink reports each pair once, so
        both directions are stored.

        Raises:
            ConfigurationError: plink not configured or panel missing
            BuildError: no SNP in the panel or no pair reaches ``min_r2``
            DelegationError: plink failed
        """
        logger = logger or logging.getLogger(__name__)
        if runner is None:
            raise ConfigurationError(
                "Building a precomputed LD reference needs plink; configure its path"
            )
        variants = read_bim(Path(bfile))
        snps = [vid for vid, a1, a2 in variants if len(a1) == 1 and len(a2) == 1]
        if logger.isEnabledFor(logging.INFO):
            logger.info(
                f"Tag table build: {len(snps)} SNPs kept, "
                f"{len(variants) - len(snps)} indels excluded"
            )
        if not snps:
            raise BuildError(f"No SNPs in {bfile}.bim to build a tag table from")

        with tempfile.TemporaryDirectory(prefix="gwasquery_ldref_") as tmp:
            extract = Path(tmp) / "snps.txt"
            extract.write_text("\n".join(snps) + "\n")
            ld_path = runner.run_ld(
                [
                    "--bfile", str(bfile),
                    "--extract", str(extract),
                    "--r", "in-phase",
                    "--ld-window-kb", str(window_kb),
                    "--ld-window", str(window_nsnp),
                    "--ld-window-r2", str(min_r2),
                    "--threads", str(threads),
                ],
                Path(tmp) / "tags",
            )
            pairs = parse_ld_table(ld_path)

        both = [t for pair in pairs for t in (pair, pair.reversed())]
        return cls.write(path, both, min_r2, logger)

    def tags_many(
        self, rsids: Sequence[str], min_r2: float
    ) -> Dict[str, List[LDTag]]:
        """Stored tags per identifier, ordered by r2 then stored order.

        Raises:
            ThresholdExceededError: ``min_r2`` is below the build minimum
        """
        if min_r2 < self.min_r2:
            raise ThresholdExceededError(
                f"Tag table {self.path.name} only holds r2 >= {self.min_r2:g}, "
                f"requested {min_r2:g}"
            )
        grouped: Dict[str, List[LDTag]] = {}
        with closing(connect_readonly(self.path)) as conn:
            for batch in chunked(sorted(set(rsids))):
                marks = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT snp_a, snp_b, r2, sign, phase FROM {self.TABLE} "
                    f"WHERE snp_a IN ({marks}) AND r2 >= ? "
                    "ORDER BY snp_a, r2 DESC, rowid",
                    [*batch, min_r2],
                ).fetchall()
                for snp_a, snp_b, r2, sign, phase in rows:
                    grouped.setdefault(snp_a, []).append(
                        LDTag(
                            snp_a,
                            snp_b,
                            float(r2),
                            int(sign),
                            PhaseAlleles.parse(phase) if phase else None,
                        )
                    )
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Tag table lookup: {len(grouped)} of {len(set(rsids))} identifier(s) tagged"
            )
        return grouped
