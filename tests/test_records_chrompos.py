from pathlib import Path

import pytest

from gwasquery.core.chrompos import ChromPosFilter
from gwasquery.core.records import (
    GenomicRange,
    RecordSet,
    VariantRecord,
    parse_chrompos,
    pval_to_lp,
)
from gwasquery.io.vcf_reader import VariantStore

from .helpers import write_corpus, write_gwas_vcf


def _rec(chrom: str, pos: int, rsid: str = None) -> VariantRecord:
    return VariantRecord(chrom=chrom, pos=pos, ref="A", alt="G", rsid=rsid)


@pytest.fixture
def corpus(tmp_path: Path) -> RecordSet:
    return VariantStore(write_corpus(tmp_path, indexed=False)).read()


def test_parse_chrompos_forms():
    assert parse_chrompos("1:100-200") == GenomicRange("1", 100, 200)
    assert parse_chrompos("X:5") == GenomicRange("X", 5, 5)
    assert parse_chrompos("chr2") == GenomicRange("chr2")
    for bad in ["", "1:", "1:a-b", "1:10-", "1:300-200", "1:0-5"]:
        with pytest.raises(ValueError):
            parse_chrompos(bad)


def test_genomic_range_requires_both_bounds():
    with pytest.raises(ValueError):
        GenomicRange("1", 10, None)
    assert GenomicRange("1").contains("1", 123456789)
    assert not GenomicRange("1", 10, 20).contains("2", 15)


def test_pval_to_lp_domain():
    assert pval_to_lp(1.0) == 0.0
    assert pval_to_lp(0.001) == pytest.approx(3.0)
    for bad in [0.0, -0.1, 1.5]:
        with pytest.raises(ValueError):
            pval_to_lp(bad)


def test_record_set_sorts_within_chromosome_keeping_chrom_order():
    rs = RecordSet([_rec("2", 50), _rec("1", 30), _rec("2", 10), _rec("1", 20)])
    assert [(r.chrom, r.pos) for r in rs] == [("2", 10), ("2", 50), ("1", 20), ("1", 30)]
    assert rs.chromosomes == ["2", "1"]
    assert rs.block("1") == (2, 4)
    assert rs.block("3") is None


def test_corpus_range_and_point(corpus: RecordSet):
    flt = ChromPosFilter()
    assert len(corpus) == 92

    hits = flt.apply(corpus, [parse_chrompos("1:1097291-1099437")])
    assert [r.pos for r in hits] == [1097291, 1099437]

    point = flt.apply(corpus, [parse_chrompos("1:721290")])
    assert len(point) == 1
    assert point[0].rsid == "rs12565286"


def test_whole_chromosome_and_unknown_chromosome(corpus: RecordSet):
    flt = ChromPosFilter()
    assert len(flt.apply(corpus, [GenomicRange("1")])) == 92
    assert len(flt.apply(corpus, [GenomicRange("7", 1, 10**9)])) == 0
    assert len(flt.apply(corpus, [])) == 0


def test_overlapping_ranges_do_not_duplicate(corpus: RecordSet):
    flt = ChromPosFilter()
    ranges = [parse_chrompos("1:721290-750000"), parse_chrompos("1:740000-760000")]
    hits = flt.apply(corpus, ranges)
    positions = [r.pos for r in hits]
    assert positions == sorted(set(positions))
    assert positions[0] == 721290 and positions[-1] == 756290


def test_range_filter_is_monotone(corpus: RecordSet):
    flt = ChromPosFilter()
    narrow = flt.apply(corpus, [parse_chrompos("1:800000-900000")])
    wide = flt.apply(corpus, [parse_chrompos("1:700000-1000000")])
    assert narrow.keys() <= wide.keys()
    # Filtering an already filtered set by the same range changes nothing
    again = flt.apply(wide, [parse_chrompos("1:700000-1000000")])
    assert again.keys() == wide.keys()


def test_indexed_store_fetches_only_requested_ranges(tmp_path: Path):
    store = VariantStore(write_corpus(tmp_path, indexed=True))
    assert store.indexed
    fetched = store.read([parse_chrompos("1:1097291-1099437"), parse_chrompos("1:1099437")])
    assert [r.rsid for r in fetched] == ["rs200001", "rs200002"]
    assert store.header().studies == ["ieu-a-2"]


def test_multi_study_records_are_split_per_study(tmp_path: Path):
    vcf = write_gwas_vcf(
        tmp_path / "two.vcf",
        ["s1", "s2"],
        [
            {
                "pos": 100,
                "id": "rs1",
                "stats": [{"es": 0.5, "se": 0.1, "lp": 4.0}, {"es": -0.1, "lp": 0.2}],
            }
        ],
    )
    records = VariantStore(vcf).read()
    assert [r.study for r in records] == ["s1", "s2"]
    assert records[0].lp == pytest.approx(4.0)
    assert records[1].se is None
    assert records[1].pval == pytest.approx(10 ** -0.2, rel=1e-5)
