"""Main application coordinator for gwasquery."""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from dataclasses import dataclass

from .core import (
    BcftoolsAccelerator,
    ConfigurationError,
    IdentifierFilter,
    IdentifierIndex,
    LDReference,
    PanelReference,
    PlinkRunner,
    ProxyMode,
    ProxyResolver,
    ProxyResult,
    QueryPlanner,
    RangeFilter,
    RecordSet,
    TagTable,
    ThresholdFilter,
    ThresholdIndex,
    parse_chrompos,
)
from .core.planner import QueryFilter
from .io import ResultWriter, VariantStore
from .utils import (
    MemoryMonitor,
    ToolPaths,
    detect_capabilities,
    ensure_variant_index,
    has_variant_index,
    setup_logger,
)

__all__ = ["GwasQueryConfig", "GwasQueryApp", "QueryOutcome"]


@dataclass
class GwasQueryConfig:
    """Configuration for the gwasquery application.

    Attributes:
        vcf: Path to the GWAS-VCF summary statistics file (not needed to
            build an LD reference)
        rsid_index: Prebuilt identifier index (sqlite), optional
        pval_index: Prebuilt threshold index (sqlite), optional
        ld_bfile: plink reference panel prefix for on-demand LD
        ld_db: Precomputed tag table (sqlite); preferred over ld_bfile
        proxies: Proxy mode for identifier queries (no, yes, only)
        tag_r2: Minimum r2 for a proxy
        tag_kb: LD window in kb
        tag_nsnp: LD window in number of variants
        threads: Worker threads for plink and proxy resolution
        bcftools: Explicit bcftools binary
        plink: Explicit plink binary
        create_index: Create a tabix/CSI index for the VCF when missing
        verbose: Whether to enable verbose logging
        log_level: Logging level override
        log_format: Logging format (text or json)
        output: TSV destination; stdout when None
        show_progress: Show tqdm progress bars during builds

    Example:
        >>> config = GwasQueryConfig(vcf=Path("ieu-a-2.vcf.gz"), proxies="yes",
        ...                          ld_bfile=Path("ref/EUR"))
        >>> print(f"{config.vcf} proxies={config.proxies} r2>={config.tag_r2}")
        ieu-a-2.vcf.gz proxies=yes r2>=0.8
    """

    vcf: Optional[Path] = None
    rsid_index: Optional[Path] = None
    pval_index: Optional[Path] = None
    ld_bfile: Optional[Path] = None
    ld_db: Optional[Path] = None
    proxies: str = "no"
    tag_r2: float = 0.8
    tag_kb: int = 5000
    tag_nsnp: int = 5000
    threads: int = 1
    bcftools: Optional[str] = None
    plink: Optional[str] = None
    create_index: bool = False
    verbose: bool = True
    log_level: Optional[str] = None
    log_format: str = "text"
    output: Optional[Path] = None
    show_progress: bool = False


@dataclass
class QueryOutcome:
    """Records returned by a query; ``proxies`` is set when proxies were requested."""

    records: RecordSet
    proxies: Optional[List[ProxyResult]] = None

    def __len__(self) -> int:
        if self.proxies is not None:
            return len(self.proxies)
        return len(self.records)


class GwasQueryApp:
    """Application coordinator: builds side indexes and answers queries."""

    def __init__(
        self,
        config: GwasQueryConfig,
        shutdown_checker: Optional[Callable[[], bool]] = None,
    ):
        self.config = config
        self.shutdown_checker = shutdown_checker
        self.logger = setup_logger(
            "gwasquery", config.log_level, config.log_format, config.verbose
        )
        self.memory_monitor = MemoryMonitor(self.logger)

        self.tools = ToolPaths.discover(config.bcftools, config.plink, self.logger)
        self.capabilities = detect_capabilities(self.tools)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Capabilities: {self.capabilities}")

        self._store: Optional[VariantStore] = None
        self._planner: Optional[QueryPlanner] = None
        self.result_writer = ResultWriter(self.logger)

        self.memory_monitor.check_memory_and_warn("initialization")

    @property
    def store(self) -> VariantStore:
        """Variant store of the configured VCF, indexed first if requested.

        Raises:
            ConfigurationError: no VCF configured or the file is missing
        """
        if self._store is None:
            if self.config.vcf is None:
                raise ConfigurationError("No GWAS-VCF file configured")
            vcf = Path(self.config.vcf)
            if self.config.create_index and vcf.exists() and not has_variant_index(vcf):
                try:
                    vcf = ensure_variant_index(vcf, self.tools.bcftools, self.logger)
                except ValueError as e:
                    raise ConfigurationError(str(e))
            self._store = VariantStore(
                vcf, self.logger, self.memory_monitor, self.shutdown_checker
            )
        return self._store

    @property
    def planner(self) -> QueryPlanner:
        if self._planner is None:
            accelerator = (
                BcftoolsAccelerator(self.tools.bcftools, self.logger)
                if self.capabilities.accelerator
                else None
            )
            self._planner = QueryPlanner(
                self.store,
                self.capabilities,
                accelerator,
                self.logger,
                self.shutdown_checker,
            )
        return self._planner

    @property
    def plink_runner(self) -> Optional[PlinkRunner]:
        if not self.capabilities.correlation:
            return None
        return PlinkRunner(self.tools.plink, self.logger)

    def ld_reference(self) -> LDReference:
        """LD reference from the config: tag table first, then panel.

        Raises:
            ConfigurationError: neither is configured, or the panel needs plink
        """
        if self.config.ld_db is not None:
            return TagTable.open(self.config.ld_db, self.logger)
        if self.config.ld_bfile is not None:
            return PanelReference(
                self.config.ld_bfile,
                self.plink_runner,
                window_kb=self.config.tag_kb,
                window_nsnp=self.config.tag_nsnp,
                threads=self.config.threads,
                logger=self.logger,
            )
        raise ConfigurationError(
            "LD proxies requested but no reference panel (--bfile) "
            "or tag table (--ld-db) is configured"
        )

    def build_plan(
        self,
        chrompos: Sequence[str] = (),
        rsids: Sequence[str] = (),
        pval: Optional[float] = None,
    ) -> List[QueryFilter]:
        """Filters in evaluation order: ranges, identifiers, threshold."""
        plan: List[QueryFilter] = []
        if chrompos:
            plan.append(RangeFilter(tuple(parse_chrompos(c) for c in chrompos)))
        if rsids:
            plan.append(IdentifierFilter(tuple(rsids), self.config.rsid_index))
        if pval is not None:
            plan.append(ThresholdFilter(pval, self.config.pval_index))
        return plan

    def query(
        self,
        chrompos: Sequence[str] = (),
        rsids: Sequence[str] = (),
        pval: Optional[float] = None,
    ) -> QueryOutcome:
        """Answer a query and write it to the configured output.

        Example:
            >>> app = GwasQueryApp(GwasQueryConfig(vcf=Path("ieu-a-2.vcf.gz")))
            >>> outcome = app.query(chrompos=["1:1-1200000"], pval=0.05)
            >>> len(outcome)
            7
        """
        plan = self.build_plan(chrompos, rsids, pval)
        mode = ProxyMode(self.config.proxies)

        if rsids and mode != ProxyMode.NO:
            resolver = ProxyResolver(
                self.planner,
                self.ld_reference(),
                min_r2=self.config.tag_r2,
                max_workers=self.config.threads,
                logger=self.logger,
                shutdown_checker=self.shutdown_checker,
            )
            results = resolver.resolve(rsids, mode, plan)
            outcome = QueryOutcome(RecordSet(r.record for r in results), results)
            self.result_writer.write(self.config.output, [], results)
        else:
            if mode != ProxyMode.NO and self.logger.isEnabledFor(logging.WARNING):
                self.logger.warning("Proxy mode ignored: no identifiers were requested")
            records = self.planner.execute(plan)
            outcome = QueryOutcome(records)
            self.result_writer.write(self.config.output, records)

        self.memory_monitor.check_memory_and_warn("query complete")
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(f"Query returned {len(outcome)} record(s)")
            final_memory = self.memory_monitor.get_memory_usage_mb()
            self.logger.info(f"Final memory usage: {final_memory:.1f}MB")
        return outcome

    def build_rsid_index(self, path: Path) -> IdentifierIndex:
        return IdentifierIndex.build(
            self.store,
            path,
            self.logger,
            show_progress=self.config.show_progress,
            shutdown_checker=self.shutdown_checker,
        )

    def build_pval_index(self, path: Path, max_pval: float) -> ThresholdIndex:
        return ThresholdIndex.build(
            self.store,
            path,
            max_pval,
            self.logger,
            show_progress=self.config.show_progress,
            shutdown_checker=self.shutdown_checker,
        )

    def build_ld_reference(
        self, bfile: Path, path: Path, min_r2: float = 0.6
    ) -> TagTable:
        """Precompute a tag table keeping pairs with r2 >= ``min_r2``.

        The LD window and thread count come from the config.
        """
        return TagTable.build(
            bfile,
            path,
            self.plink_runner,
            min_r2=min_r2,
            window_kb=self.config.tag_kb,
            window_nsnp=self.config.tag_nsnp,
            threads=self.config.threads,
            logger=self.logger,
        )
