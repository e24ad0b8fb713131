import subprocess
import sys
from pathlib import Path
from typing import List

import pytest

from gwasquery.io.result_writer import RESULT_COLUMNS

from .helpers import write_corpus

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _run(args: List[str], check: bool = True) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "gwasquery.cli", *args],
        cwd=str(PROJECT_ROOT),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=check,
    )


def _rows(tsv: str) -> List[List[str]]:
    lines = [line for line in tsv.splitlines() if line]
    assert lines[0].split("\t") == RESULT_COLUMNS
    return [line.split("\t") for line in lines[1:]]


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    return write_corpus(tmp_path)


@pytest.mark.parametrize(
    "extra, message",
    [
        (["-p", "0"], "p-value"),
        (["-p", "1.5"], "p-value"),
        (["-r", "rs1", "--tag-r2", "1.5"], "--tag-r2"),
        (["-r", "rs1", "-t", "0"], "threads"),
        (["-r", "rs1", "--proxies", "yes"], "LD reference"),
        (["--proxies", "only", "-p", "0.05"], "needs identifiers"),
        ([], "at least one"),
    ],
)
def test_query_validation_errors(corpus: Path, extra: List[str], message: str):
    res = _run(["query", str(corpus), *extra], check=False)
    assert res.returncode != 0
    assert message in res.stderr


def test_index_pval_rejects_bad_cutoff(corpus: Path, tmp_path: Path):
    res = _run(["index-pval", str(corpus), str(tmp_path / "x.pvalidx"), "-p", "0"], check=False)
    assert res.returncode != 0
    assert not (tmp_path / "x.pvalidx").exists()


def test_range_query_to_stdout(corpus: Path):
    res = _run(["query", str(corpus), "-c", "1:1097291-1099437", "-q"])
    rows = _rows(res.stdout)
    assert [r[RESULT_COLUMNS.index("rsid")] for r in rows] == ["rs200001", "rs200002"]


def test_point_query_with_comma_separated_regions(corpus: Path):
    res = _run(["query", str(corpus), "-c", "1:721290,1:1099437", "-q"])
    rows = _rows(res.stdout)
    assert [r[RESULT_COLUMNS.index("pos")] for r in rows] == ["721290", "1099437"]


def test_build_indexes_then_query(corpus: Path, tmp_path: Path):
    rsidx = tmp_path / "corpus.rsidx"
    pvalidx = tmp_path / "corpus.pvalidx"
    _run(["index-rsid", str(corpus), str(rsidx), "-q"])
    _run(["index-pval", str(corpus), str(pvalidx), "-p", "0.05", "-q"])
    assert rsidx.exists() and pvalidx.exists()

    out = tmp_path / "hits.tsv"
    _run(["query", str(corpus), "-p", "0.05", "--pval-index", str(pvalidx), "-o", str(out), "-q"])
    assert len(_rows(out.read_text())) == 7

    res = _run(
        [
            "query",
            str(corpus),
            "-r",
            "rs12565286",
            "-r",
            "rs100010,rs4442317",
            "--rsid-index",
            str(rsidx),
            "-q",
        ]
    )
    rsids = [r[RESULT_COLUMNS.index("rsid")] for r in _rows(res.stdout)]
    assert rsids == ["rs12565286", "rs100010"]


def test_looser_threshold_falls_back_to_scan(corpus: Path, tmp_path: Path):
    pvalidx = tmp_path / "corpus.pvalidx"
    _run(["index-pval", str(corpus), str(pvalidx), "-p", "0.001", "-q"])
    indexed = _run(["query", str(corpus), "-p", "0.05", "--pval-index", str(pvalidx)])
    assert len(_rows(indexed.stdout)) == 7
    assert "falling back" in indexed.stderr


def test_missing_input_reports_error(tmp_path: Path):
    res = _run(["query", str(tmp_path / "absent.vcf.gz"), "-p", "0.05", "-q"], check=False)
    assert res.returncode != 0
    assert "ERROR:" in res.stderr


def test_rsid_file(corpus: Path, tmp_path: Path):
    ids = tmp_path / "ids.txt"
    ids.write_text("# wanted\nrs200002\nrs12565286 extra-column\n")
    res = _run(["query", str(corpus), "--rsid-file", str(ids), "-q"])
    rsids = [r[RESULT_COLUMNS.index("rsid")] for r in _rows(res.stdout)]
    assert rsids == ["rs12565286", "rs200002"]


def test_version_flag():
    res = _run(["-V"])
    assert res.stdout.startswith("gwasquery ")
