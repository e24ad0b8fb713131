from pathlib import Path

import pytest

from gwasquery.core.errors import QueryCancelledError
from gwasquery.core.ld_reference import LDTag, PanelReference, PhaseAlleles, TagTable
from gwasquery.core.planner import IdentifierFilter, QueryPlanner, RangeFilter, ThresholdFilter
from gwasquery.core.proxy_resolver import ProxyMode, ProxyResolver, align_proxy
from gwasquery.core.records import VariantRecord, parse_chrompos
from gwasquery.io.vcf_reader import VariantStore
from gwasquery.utils.tools import Capabilities

from .helpers import StubPlinkRunner, write_bim, write_corpus


def _record(**kwargs) -> VariantRecord:
    values = dict(
        chrom="1", pos=100, ref="A", alt="G", rsid="rs2", es=0.2, se=0.05, lp=3.0, af=0.3, ss=5000.0
    )
    values.update(kwargs)
    return VariantRecord(**values)


def test_align_against_itself_is_noop():
    rec = _record(rsid="rs1")
    assert align_proxy(rec, LDTag("rs1", "rs1", 1.0), "rs1") == rec


def test_align_negative_sign_flips_effect():
    out = align_proxy(_record(), LDTag("rs1", "rs2", 0.81, sign=-1), "rs1")
    assert out.es == pytest.approx(-0.2)
    assert out.af == pytest.approx(0.7)
    assert (out.alt, out.ref) == ("A", "G")
    assert out.rsid == "rs1"
    assert out.source_rsid == "rs2"
    assert out.is_proxy
    assert out.se == 0.05 and out.lp == 3.0 and out.pos == 100


def test_align_positive_sign_keeps_effect():
    out = align_proxy(_record(), LDTag("rs1", "rs2", 0.81, sign=1), "rs1")
    assert (out.es, out.af, out.alt, out.ref) == (0.2, 0.3, "G", "A")
    assert out.provenance == "rs2"


def test_align_with_phase():
    # rs1 allele C travels with the proxy's G, rs1 allele T with its A
    in_phase = LDTag("rs1", "rs2", 0.9, phase=PhaseAlleles("C", "G", "T", "A"))
    out = align_proxy(_record(), in_phase, "rs1")
    assert (out.alt, out.ref, out.es, out.af) == ("C", "T", 0.2, 0.3)

    # rs1 allele C travels with the proxy's A (its non-effect allele)
    flipped = LDTag("rs1", "rs2", 0.9, phase=PhaseAlleles("C", "A", "T", "G"))
    out = align_proxy(_record(), flipped, "rs1")
    assert (out.alt, out.ref) == ("C", "T")
    assert out.es == pytest.approx(-0.2)
    assert out.af == pytest.approx(0.7)


def test_align_phase_mismatch_is_rejected():
    tag = LDTag("rs1", "rs2", 0.9, phase=PhaseAlleles("C", "T", "G", "C"))
    assert align_proxy(_record(), tag, "rs1") is None


def test_align_handles_missing_values():
    out = align_proxy(_record(es=None, af=None), LDTag("rs1", "rs2", 0.9, sign=-1), "rs1")
    assert out.es is None and out.af is None


@pytest.fixture
def store(tmp_path: Path) -> VariantStore:
    return VariantStore(write_corpus(tmp_path))


@pytest.fixture
def panel(tmp_path: Path) -> PanelReference:
    bfile = tmp_path / "ref"
    write_bim(
        bfile,
        [
            ("1", "rs12565286", 721290, "A", "G"),
            ("1", "rs4442317", 740000, "C", "T"),
            ("1", "rs100005", 746290, "A", "G"),
            ("1", "rs100006", 751290, "A", "G"),
            ("1", "rs9999999", 760000, "A", "G"),
        ],
    )
    runner = StubPlinkRunner(
        [
            # rs9999999 is absent from the source, so rs100005 is the first usable tag
            ("rs4442317", "rs9999999", 0.4, "CG/TA"),
            ("rs4442317", "rs100005", 0.3, "CG/TA"),
            ("rs4442317", "rs100006", -0.25, "CA/TG"),
            ("rs4442317", "rs12565286", 0.1, "CG/TA"),
            ("rs12565286", "rs100005", 0.9, "AA/GG"),
        ]
    )
    return PanelReference(bfile, runner)


def test_missing_identifier_resolves_to_one_proxy(store: VariantStore, panel: PanelReference):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.05)
    results = resolver.resolve(["rs4442317"], ProxyMode.YES)

    assert len(results) == 1
    (res,) = results
    assert res.is_proxy
    assert res.requested == "rs4442317"
    assert res.resolved == "rs100005"
    assert res.r2 >= 0.05
    assert res.r2 == pytest.approx(0.09)
    assert res.record.provenance == "rs100005"
    assert res.record.rsid == "rs4442317"
    assert (res.record.alt, res.record.ref) == ("C", "T")


def test_present_identifier_is_returned_directly_in_yes_mode(
    store: VariantStore, panel: PanelReference
):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.05)
    results = resolver.resolve(["rs12565286", "rs4442317", "rs404"], ProxyMode.YES)
    assert [(r.requested, r.resolved) for r in results] == [
        ("rs12565286", "rs12565286"),
        ("rs4442317", "rs100005"),
    ]
    direct = results[0]
    assert direct.r2 == 1.0 and not direct.is_proxy
    assert direct.record.source_rsid is None


def test_identifier_case_matches_planner(store: VariantStore, panel: PanelReference):
    planner = QueryPlanner(store, Capabilities())
    resolver = ProxyResolver(planner, panel, min_r2=0.05)

    direct = resolver.resolve(["RS12565286"], ProxyMode.NO)
    assert len(direct) == len(planner.execute([IdentifierFilter(("RS12565286",))])) == 1
    assert direct[0].requested == "RS12565286"
    assert not direct[0].is_proxy
    assert direct[0].record.pos == 721290

    results = resolver.resolve(["Rs12565286", "RS4442317"], ProxyMode.YES)
    assert [(r.requested, r.resolved) for r in results] == [
        ("Rs12565286", "Rs12565286"),
        ("RS4442317", "rs100005"),
    ]
    assert results[1].record.rsid == "RS4442317"
    assert results[1].r2 == pytest.approx(0.09)


def test_no_mode_never_searches(store: VariantStore, panel: PanelReference):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.05)
    results = resolver.resolve(["rs12565286", "rs4442317"], ProxyMode.NO)
    assert [r.resolved for r in results] == ["rs12565286"]
    assert panel.runner.calls == []


def test_only_mode_returns_proxies_for_present_identifiers(
    store: VariantStore, panel: PanelReference
):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.5)
    results = resolver.resolve(["rs12565286"], ProxyMode.ONLY)
    assert [(r.requested, r.resolved) for r in results] == [("rs12565286", "rs100005")]
    assert results[0].record.rsid == "rs12565286"


def test_unresolved_when_threshold_too_strict(store: VariantStore, panel: PanelReference):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.5)
    assert resolver.resolve(["rs4442317"], ProxyMode.YES) == []


def test_proxies_respect_other_filters(store: VariantStore, panel: PanelReference):
    resolver = ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=0.05)
    # rs100005 (746290) is outside the range, rs100006 (751290) inside
    plan = [RangeFilter([parse_chrompos("1:750000-760000")])]
    results = resolver.resolve(["rs4442317"], ProxyMode.YES, plan)
    assert [r.resolved for r in results] == ["rs100006"]
    flipped = results[0].record
    # Negative correlation: proxy effect allele G pairs with rs4442317 allele T
    assert (flipped.alt, flipped.ref) == ("C", "T")
    assert flipped.es == pytest.approx(-0.07, rel=1e-5)

    significant = resolver.resolve(["rs4442317"], ProxyMode.YES, [ThresholdFilter(0.05)])
    assert significant == []


def test_resolution_with_tag_table_and_threads(store: VariantStore, tmp_path: Path):
    TagTable.write(
        tmp_path / "tags.db",
        [
            LDTag("rs4442317", "rs100005", 0.9),
            LDTag("rs555", "rs100010", 0.85, sign=-1),
            LDTag("rs556", "rs404", 0.95),
        ],
        min_r2=0.8,
    )
    table = TagTable.open(tmp_path / "tags.db")
    resolver = ProxyResolver(
        QueryPlanner(store, Capabilities()), table, min_r2=0.8, max_workers=4
    )
    results = resolver.resolve(["rs555", "rs556", "rs4442317"], ProxyMode.YES)
    assert [(r.requested, r.resolved) for r in results] == [
        ("rs555", "rs100010"),
        ("rs4442317", "rs100005"),
    ]
    assert results[0].record.es == pytest.approx(-0.11, rel=1e-5)


def test_resolution_can_be_cancelled(store: VariantStore, panel: PanelReference):
    resolver = ProxyResolver(
        QueryPlanner(store, Capabilities()),
        panel,
        min_r2=0.05,
        shutdown_checker=lambda: True,
    )
    with pytest.raises(QueryCancelledError):
        resolver.resolve(["rs4442317"], ProxyMode.YES)


def test_invalid_min_r2(store: VariantStore, panel: PanelReference):
    with pytest.raises(ValueError):
        ProxyResolver(QueryPlanner(store, Capabilities()), panel, min_r2=1.5)
