"""Memory usage monitoring while materialising records and building indexes."""

import logging

import psutil

__all__ = ["MemoryMonitor"]


class MemoryMonitor:
    """Warn when resident memory approaches the machine's limits.

    Full scans materialise every record of a GWAS-VCF in memory, which for
    genome-wide files with many studies can exhaust RAM; the monitor is
    consulted at those points.
    """

    WARNING_THRESHOLD_PERCENT = 50.0
    CRITICAL_THRESHOLD_PERCENT = 90.0
    # Rough footprint of one VariantRecord plus its tuple slot
    BYTES_PER_RECORD = 480

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.process = psutil.Process()

        total_memory_mb = psutil.virtual_memory().total / 1024 / 1024
        self.warning_threshold_mb = total_memory_mb * (
            self.WARNING_THRESHOLD_PERCENT / 100
        )
        self.critical_threshold_mb = total_memory_mb * (
            self.CRITICAL_THRESHOLD_PERCENT / 100
        )
        self.logger.debug(
            f"Memory thresholds: warning={self.warning_threshold_mb:.1f}MB, "
            f"critical={self.critical_threshold_mb:.1f}MB of {total_memory_mb:.1f}MB total"
        )

    def get_memory_usage_mb(self) -> float:
        """Current resident set size in MB."""
        rss: int = self.process.memory_info().rss
        return float(rss / 1024 / 1024)

    def get_available_memory_mb(self) -> float:
        available: int = psutil.virtual_memory().available
        return float(available / 1024 / 1024)

    def check_memory_and_warn(self, operation: str = "operation") -> None:
        """Log a warning if memory use is above the warning or critical threshold.

        Args:
            operation: Name of operation being performed (for logging context)
        """
        current_mb = self.get_memory_usage_mb()
        available_mb = self.get_available_memory_mb()

        if current_mb > self.critical_threshold_mb:
            self.logger.warning(
                f"CRITICAL: High memory usage during {operation}: {current_mb:.1f}MB "
                f"(>{self.critical_threshold_mb:.1f}MB threshold). "
                f"Available: {available_mb:.1f}MB. Narrow the query with a range "
                "or a prebuilt side index."
            )
        elif current_mb > self.warning_threshold_mb:
            self.logger.warning(
                f"Elevated memory usage during {operation}: {current_mb:.1f}MB "
                f"(>{self.warning_threshold_mb:.1f}MB threshold). "
                f"Available: {available_mb:.1f}MB."
            )
        else:
            self.logger.debug(f"Memory usage during {operation}: {current_mb:.1f}MB")

    def estimate_records_memory_mb(self, num_records: int) -> float:
        return num_records * self.BYTES_PER_RECORD / 1024 / 1024

    def warn_for_large_result(self, num_records: int) -> None:
        """Warn when a materialised record set is large relative to free memory."""
        estimated_mb = self.estimate_records_memory_mb(num_records)
        available_mb = self.get_available_memory_mb()
        if estimated_mb > available_mb * 0.8:
            self.logger.warning(
                f"MEMORY WARNING: {num_records} records need ~{estimated_mb:.1f}MB, "
                f"only {available_mb:.1f}MB available."
            )
        elif estimated_mb > self.warning_threshold_mb * 0.5:
            self.logger.info(
                f"Large result set ({num_records} records, ~{estimated_mb:.1f}MB)"
            )
