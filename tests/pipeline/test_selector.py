"""Tests for output selection, filtering and deduplication."""

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

from stagelink.contracts import BrokenChain, ConfigValidationError, ErrorReport
from stagelink.pipeline.selector import OutputSelector, parse_stage_filter


def ids(outputs):
    return [o.file.id for o in outputs]


@pytest.fixture
def selector(store):
    return OutputSelector(store)


def test_no_filter_selects_everything_in_order(mapping_graph, selector):
    g = mapping_graph
    outputs = list(selector.select(g.instance))

    # unit order, then stage position, then kind name
    assert ids(outputs) == [g.idx1, g.bai1, g.bam1, g.dedup1, g.bai2, g.bam2]
    assert [o.member.stage_name for o in outputs[:4]] == [
        "bwa_index", "bwa_map", "bwa_map", "mark_duplicates"]
    assert selector.stats.emitted == 6
    assert selector.stats.units == 2


def test_stage_by_name_and_kind(mapping_graph, selector):
    g = mapping_graph
    outputs = list(selector.select(g.instance, stage_filter=["bwa_map|bam"]))
    assert ids(outputs) == [g.bam1, g.bam2]
    assert {o.kind for o in outputs} == {"bam"}


def test_stage_by_position(mapping_graph, selector):
    g = mapping_graph
    assert ids(selector.select(g.instance, stage_filter=["3"])) == [g.dedup1]


def test_unknown_stage_fails_before_iteration(mapping_graph, selector):
    with pytest.raises(ConfigValidationError, match="no_such_stage"):
        selector.select(mapping_graph.instance, stage_filter=["no_such_stage"])


def test_parse_stage_filter_merges_kinds(mapping_graph):
    allowed = parse_stage_filter(mapping_graph.instance, ["bwa_map|bam", "bwa_map|bai", "1"])
    assert allowed == {2: {"bam", "bai"}, 1: None}


def test_unrestricted_entry_wins_over_kind(mapping_graph):
    allowed = parse_stage_filter(mapping_graph.instance, ["2|bam", "bwa_map"])
    assert allowed == {2: None}


def test_metadata_filter(mapping_graph, selector):
    g = mapping_graph
    outputs = selector.select(g.instance, metadata_filter={"sample": "NA2", "lane": "."})
    assert ids(outputs) == [g.bam2]


def test_filter_eliminating_a_unit_is_not_an_error(mapping_graph, store):
    report = ErrorReport()
    selector = OutputSelector(store, report=report)
    outputs = list(selector.select(mapping_graph.instance, metadata_filter={"sample": "^NA1$"}))
    assert all(o.unit.id == mapping_graph.unit1 for o in outputs)
    assert not report


def test_invalid_metadata_pattern(mapping_graph, selector):
    with pytest.raises(ConfigValidationError, match="not a valid regex"):
        selector.select(mapping_graph.instance, metadata_filter={"sample": "("})


def test_shared_file_is_emitted_once(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    u1, u2 = builder.unit(src, ["in/a.fq"]), builder.unit(src, ["in/a.fq"])
    shared = builder.file("out/a.bam")
    builder.record(inst, u1, 1, {"bam": [shared]})
    builder.record(inst, u2, 1, {"bam": [shared]})

    outputs = list(selector.select(store.get_instance(inst)))

    assert ids(outputs) == [shared]
    assert outputs[0].unit.id == u1
    assert selector.stats.duplicates == 1


def test_dedup_is_per_select_call(mapping_graph, selector):
    first = ids(selector.select(mapping_graph.instance))
    second = ids(selector.select(mapping_graph.instance))
    assert first == second


def test_moved_files_dedup_on_physical_identity(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    u1, u2 = builder.unit(src), builder.unit(src)
    old = builder.file("out/old.bam", on_disk=False)
    new = builder.file("out/new.bam")
    store.mark_moved(old, new)
    builder.record(inst, u1, 1, {"bam": [old]})
    builder.record(inst, u2, 1, {"bam": [new]})

    outputs = list(selector.select(store.get_instance(inst)))

    assert ids(outputs) == [old]


def test_withdrawn_units(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    kept = builder.unit(src)
    gone = builder.unit(src, withdrawn=True)
    a, b = builder.file("out/a.bam"), builder.file("out/b.bam")
    builder.record(inst, kept, 1, {"bam": [a]})
    builder.record(inst, gone, 1, {"bam": [b]})
    instance = store.get_instance(inst)

    assert ids(selector.select(instance)) == [a]
    assert ids(selector.select(instance, include_withdrawn=True)) == [a, b]


def test_incomplete_records(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    a = builder.file("out/a.bam")
    builder.record(inst, unit, 1, {"bam": [a]}, complete=False)
    instance = store.get_instance(inst)

    assert ids(selector.select(instance)) == []
    assert ids(selector.select(instance, include_incomplete=True)) == [a]


def test_missing_files_are_skipped(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    here = builder.file("out/here.bam")
    gone = builder.file("out/gone.bam", on_disk=False)
    builder.record(inst, unit, 1, {"bam": [gone, here]})

    assert ids(selector.select(store.get_instance(inst))) == [here]
    assert selector.stats.missing == 1


def test_missing_files_can_be_kept(store, builder):
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    here = builder.file("out/here.bam")
    gone = builder.file("out/gone.bam", on_disk=False)
    builder.record(inst, unit, 1, {"bam": [gone, here]})
    selector = OutputSelector(store, include_missing=True)

    assert ids(selector.select(store.get_instance(inst))) == [gone, here]
    assert selector.stats.missing == 1


def test_cached_stats_are_trusted(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    fid = store.add_file(builder.path("out/elsewhere.bam"), size=100, exists=True)
    builder.record(inst, unit, 1, {"bam": [fid]})

    assert ids(selector.select(store.get_instance(inst))) == [fid]


def test_stale_zero_size_is_refreshed(store, builder, selector):
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    fid = builder.file("out/late.bam", content=b"written after registration")
    builder.record(inst, unit, 1, {"bam": [fid]})

    outputs = list(selector.select(store.get_instance(inst)))

    assert outputs[0].file.id == fid


def test_broken_chain_is_reported_and_skipped(store, builder):
    report = ErrorReport()
    selector = OutputSelector(store, report=report)
    inst, src = builder.instance("m", ["map"])
    unit = builder.unit(src)
    bad, good = builder.file("out/bad.bam"), builder.file("out/good.bam")
    store.mark_moved(bad, 777)
    builder.record(inst, unit, 1, {"bam": [bad, good]})

    assert ids(selector.select(store.get_instance(inst))) == [good]
    assert len(report.of_type(BrokenChain)) == 1


def test_paging_does_not_change_results(mapping_graph, store):
    g = mapping_graph
    small = OutputSelector(store, page_size=1)
    assert ids(small.select(g.instance)) == [g.idx1, g.bai1, g.bam1, g.dedup1, g.bai2, g.bam2]
