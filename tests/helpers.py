import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam


def _artifacts_enabled() -> bool:
    value = os.getenv("GWASQUERY_SAVE_VCFS", "0")
    return value.lower() in ("1", "true", "yes", "on")


def _project_root() -> Path:
    # helpers.py resides in tests/, go one level up
    return Path(__file__).resolve().parents[1]


def save_artifact(src: Path, subdir: str = ""):
    if not _artifacts_enabled():
        return
    src = Path(src)
    dst_dir = _project_root() / "saved_vcfs"
    if subdir:
        dst_dir = dst_dir / subdir
    dst_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst_dir / src.name)


FORMAT_KEYS = ["ES", "SE", "LP", "AF", "SS"]

# 7 loci reach p <= 0.05 (LP >= 1.30103); index into the arithmetic run
SIGNIFICANT_LP = {3: 2.0, 10: 7.3, 17: 1.31, 40: 3.5, 55: 1.6, 71: 5.2, 88: 10.0}
EXTRA_POSITIONS = [1097291, 1099437, 1188225]
NONCONFORMING_ID = "1:1188225_G_A"


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return "."
    return f"{value:g}"


def write_gwas_vcf(path: Path, studies: List[str], variants: List[Dict]) -> Path:
    """
    Write a minimal GWAS-VCF with provided variants, sorted by position.

    Each variant dict must contain keys:
      - pos (int)
      - id (str, "." for missing)
      - stats (List[Dict]) aligned to studies order, each with optional
        es, se, lp, af, ss

    Optional keys: chrom (default "1"), ref (default "A"), alt (default "G").
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    contigs = list(dict.fromkeys(v.get("chrom", "1") for v in variants)) or ["1"]
    rows = sorted(
        variants, key=lambda v: (contigs.index(v.get("chrom", "1")), v["pos"])
    )
    with open(path, "w") as f:
        f.write("##fileformat=VCFv4.2\n")
        f.write("##source=gwasquery-tests\n")
        for contig in contigs:
            f.write(f"##contig=<ID={contig},length=249250621>\n")
        f.write('##FORMAT=<ID=ES,Number=A,Type=Float,Description="Effect size estimate relative to the alternative allele">\n')
        f.write('##FORMAT=<ID=SE,Number=A,Type=Float,Description="Standard error of effect size estimate">\n')
        f.write('##FORMAT=<ID=LP,Number=A,Type=Float,Description="-log10 p-value for effect estimate">\n')
        f.write('##FORMAT=<ID=AF,Number=A,Type=Float,Description="Alternative allele frequency in trait subset">\n')
        f.write('##FORMAT=<ID=SS,Number=A,Type=Float,Description="Sample size used to estimate genetic effect">\n')
        f.write(
            "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\t"
            + "\t".join(studies)
            + "\n"
        )
        for v in rows:
            line = [
                v.get("chrom", "1"),
                str(v["pos"]),
                v["id"],
                v.get("ref", "A"),
                v.get("alt", "G"),
                ".",
                "PASS",
                ".",
                ":".join(FORMAT_KEYS),
            ]
            for stats in v["stats"]:
                line.append(
                    ":".join(_fmt(stats.get(k.lower())) for k in FORMAT_KEYS)
                )
            f.write("\t".join(line) + "\n")
    save_artifact(path)
    return path


def compress_and_index(path: Path) -> Path:
    """bgzip + tabix a plain VCF, keeping the original; returns the .vcf.gz."""
    out = pysam.tabix_index(str(path), preset="vcf", force=True, keep_original=True)
    return Path(out)


def corpus_variants() -> List[Dict]:
    """92 single-study records on chromosome 1 between 721290 and 1188225.

    Exactly 7 records have p <= 0.05; rs4442317 is not part of the corpus.
    """
    variants: List[Dict] = []
    for i in range(89):
        pos = 721290 + 5000 * i
        rsid = "rs12565286" if i == 0 else f"rs{100000 + i}"
        lp = SIGNIFICANT_LP.get(i, round(0.1 * (i % 12), 2))
        variants.append(
            {
                "pos": pos,
                "id": rsid,
                "ref": "A",
                "alt": "G",
                "stats": [
                    {"es": round(0.01 * (i + 1), 4), "se": 0.01, "lp": lp, "af": 0.3, "ss": 10000}
                ],
            }
        )
    extras = [
        (1097291, "rs200001", "C", "T"),
        (1099437, "rs200002", "G", "A"),
        (1188225, NONCONFORMING_ID, "G", "A"),
    ]
    for pos, rsid, ref, alt in extras:
        variants.append(
            {
                "pos": pos,
                "id": rsid,
                "ref": ref,
                "alt": alt,
                "stats": [{"es": -0.02, "se": 0.01, "lp": 0.5, "af": 0.25, "ss": 10000}],
            }
        )
    return variants


def write_corpus(tmp_dir: Path, indexed: bool = True) -> Path:
    """Write the 92-record corpus; returns the .vcf.gz when ``indexed``."""
    vcf = write_gwas_vcf(Path(tmp_dir) / "corpus.vcf", ["ieu-a-2"], corpus_variants())
    return compress_and_index(vcf) if indexed else vcf


def write_bim(bfile: Path, variants: Sequence[tuple]) -> Path:
    """Write ``<bfile>.bim`` rows (chrom, id, pos, a1, a2)."""
    bim = Path(str(bfile) + ".bim")
    bim.parent.mkdir(parents=True, exist_ok=True)
    with open(bim, "w") as f:
        for chrom, vid, pos, a1, a2 in variants:
            f.write(f"{chrom}\t{vid}\t0\t{pos}\t{a1}\t{a2}\n")
    return bim


def write_ld_table(path: Path, rows: Sequence[tuple], phased: bool = True) -> Path:
    """Write a plink ``--r in-phase`` style table.

    Rows are (snp_a, snp_b, r, phase) with ``phased``; (snp_a, snp_b, r)
    otherwise.
    """
    header = ["CHR_A", "BP_A", "SNP_A", "CHR_B", "BP_B", "SNP_B"]
    header += ["PHASE", "R"] if phased else ["R"]
    with open(path, "w") as f:
        f.write(" ".join(header) + "\n")
        for n, row in enumerate(rows, start=1):
            if phased:
                a, b, r, phase = row
                fields = ["1", str(n), a, "1", str(n + 1), b, phase, f"{r:g}"]
            else:
                a, b, r = row
                fields = ["1", str(n), a, "1", str(n + 1), b, f"{r:g}"]
            f.write(" ".join(fields) + "\n")
    return Path(path)


class StubPlinkRunner:
    """Stands in for PlinkRunner: records the arguments and writes a fixed table."""

    def __init__(self, rows: Sequence[tuple], phased: bool = True):
        self.rows = list(rows)
        self.phased = phased
        self.calls: List[List[str]] = []

    def run_ld(self, args: Sequence[str], out_prefix: Path) -> Path:
        self.calls.append(list(args))
        return write_ld_table(Path(str(out_prefix) + ".ld"), self.rows, self.phased)
