"""Detection and creation of range indexes (tabix/CSI) for GWAS-VCF files."""

import logging
from pathlib import Path
from typing import Optional

import pysam

from .tools import run_tool

__all__ = ["infer_format_letter", "has_variant_index", "ensure_variant_index"]


def infer_format_letter(path: Path) -> str:
    """Infer bcftools-style format letter from filename.

    Returns one of: v (VCF), z (VCF.gz), b (BCF). Defaults to 'v'.
    """
    name = str(path)
    if name.endswith(".vcf.gz") or name.endswith(".vcf.bgz"):
        return "z"
    if name.endswith(".bcf"):
        return "b"
    return "v"


def has_variant_index(path: Path) -> bool:
    """True when a .tbi or .csi sits next to a compressed VCF/BCF."""
    if infer_format_letter(path) == "v":
        return False
    return any(Path(str(path) + ext).exists() for ext in (".tbi", ".csi"))


def ensure_variant_index(
    vpath: Path,
    bcftools: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Make sure ``vpath`` can be range-queried and return the indexed file.

    - Plain VCF: bgzip-compress and tabix-index a sibling ``.vcf.gz`` copy
    - VCF.gz/BCF without index: create CSI with bcftools when configured,
      else a tabix index through pysam (VCF.gz only)

    Raises:
        DelegationError: bcftools indexing failed
        ValueError: BCF input without bcftools
    """
    fmt = infer_format_letter(vpath)
    if fmt == "v":
        if logger and logger.isEnabledFor(logging.INFO):
            logger.info(f"Compressing and indexing plain VCF {vpath}")
        out = pysam.tabix_index(str(vpath), preset="vcf", force=True, keep_original=True)
        return Path(out)

    if has_variant_index(vpath):
        return vpath

    if bcftools:
        if logger and logger.isEnabledFor(logging.INFO):
            logger.info("Index not found; creating CSI index via bcftools...")
        run_tool([bcftools, "index", "--csi", "-f", str(vpath)], logger)
        return vpath

    if fmt == "b":
        raise ValueError(f"BCF input {vpath} needs bcftools to create a CSI index")
    if logger and logger.isEnabledFor(logging.INFO):
        logger.info("Index not found; creating tabix index via pysam...")
    pysam.tabix_index(str(vpath), preset="vcf", force=True)
    return vpath
