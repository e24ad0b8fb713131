"""TSV output of query and proxy results."""

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional, TextIO

from ..core.proxy_resolver import ProxyResult
from ..core.records import VariantRecord

__all__ = ["ResultWriter", "RESULT_COLUMNS"]

RESULT_COLUMNS = [
    "chrom",
    "pos",
    "rsid",
    "ref",
    "alt",
    "study",
    "es",
    "se",
    "lp",
    "af",
    "ss",
    "source_rsid",
    "proxy_r2",
]


def _fmt(value: object) -> str:
    if value is None:
        return "NA"
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


class ResultWriter:
    """Write records as tab-separated rows to a file or stdout."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def format_rows(
        self,
        records: Iterable[VariantRecord],
        proxies: Iterable[ProxyResult] = (),
    ) -> List[str]:
        """Header plus one line per record; proxy rows carry their r2."""
        lines = ["\t".join(RESULT_COLUMNS)]
        for rec in records:
            lines.append(self._row(rec, None))
        for res in proxies:
            lines.append(self._row(res.record, res.r2 if res.is_proxy else None))
        return lines

    def _row(self, rec: VariantRecord, r2: Optional[float]) -> str:
        return "\t".join(
            _fmt(v)
            for v in (
                rec.chrom,
                rec.pos,
                rec.rsid,
                rec.ref,
                rec.alt,
                rec.study,
                rec.es,
                rec.se,
                rec.lp,
                rec.af,
                rec.ss,
                rec.source_rsid,
                r2,
            )
        )

    def write(
        self,
        output: Optional[Path],
        records: Iterable[VariantRecord],
        proxies: Iterable[ProxyResult] = (),
    ) -> int:
        """Write rows to ``output`` (stdout when None); returns the row count."""
        lines = self.format_rows(records, proxies)
        if output is None:
            self._emit(sys.stdout, lines)
        else:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, "w", encoding="utf-8") as fh:
                self._emit(fh, lines)
            if self.logger.isEnabledFor(logging.INFO):
                self.logger.info(f"{len(lines) - 1} row(s) written to {output}")
        return len(lines) - 1

    @staticmethod
    def _emit(fh: TextIO, lines: List[str]) -> None:
        fh.write("\n".join(lines) + "\n")
