"""Tests for cross-instance lineage chains."""

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

from stagelink.contracts import IncompleteLineage
from stagelink.pipeline.lineage import LineageResolver


@pytest.fixture
def resolver(store):
    return LineageResolver(store)


def keys(records):
    return [(r.instance_id, r.unit_id, r.position) for r in records]


def test_single_instance_two_stages(store, builder, resolver):
    inst, src = builder.instance("m", ["index", "map"])
    unit = builder.unit(src, ["in/a.fq"])
    r1 = builder.record(inst, unit, 1)
    r2 = builder.record(inst, unit, 2)

    chain = resolver.chain(store.get_stage_record(inst, unit, 2))

    assert [r.id for r in chain] == [r1, r2]


def test_chain_stops_at_target(store, builder, resolver):
    inst, src = builder.instance("m", ["a", "b", "c"])
    unit = builder.unit(src)
    for pos in (1, 2, 3):
        builder.record(inst, unit, pos)

    chain = resolver.chain(store.get_stage_record(inst, unit, 2))

    assert keys(chain) == [(inst, unit, 1), (inst, unit, 2)]


def test_upstream_chain_comes_first(store, builder, resolver):
    up, up_src = builder.instance("mapping", ["index", "map", "dedup"])
    parent = builder.unit(up_src, ["in/a.fq"])
    for pos in (1, 2, 3):
        builder.record(up, parent, pos)

    down, down_src = builder.instance("calling", ["call", "filter"], upstream=[(up, 3)])
    child = builder.unit(down_src)
    store.link_units(parent, child, up)
    builder.record(down, child, 1)
    builder.record(down, child, 2)

    chain = resolver.chain(store.get_stage_record(down, child, 2))

    assert keys(chain) == [
        (up, parent, 1), (up, parent, 2), (up, parent, 3),
        (down, child, 1), (down, child, 2),
    ]


def test_upstream_feed_position_limits_upstream_chain(store, builder, resolver):
    up, up_src = builder.instance("mapping", ["index", "map", "dedup"])
    parent = builder.unit(up_src)
    builder.record(up, parent, 1)
    builder.record(up, parent, 2)

    down, down_src = builder.instance("qc", ["stats"], upstream=[(up, 2)])
    child = builder.unit(down_src)
    store.link_units(parent, child, up)
    builder.record(down, child, 1)

    chain = resolver.chain(store.get_stage_record(down, child, 1))

    assert keys(chain) == [(up, parent, 1), (up, parent, 2), (down, child, 1)]


def test_multiple_parents_follow_link_order(store, builder, resolver):
    a, a_src = builder.instance("a", ["s"])
    b, b_src = builder.instance("b", ["s"])
    pa, pb = builder.unit(a_src), builder.unit(b_src)
    builder.record(a, pa, 1)
    builder.record(b, pb, 1)

    merge, merge_src = builder.instance("merge", ["m"], upstream=[(a, 1), (b, 1)])
    child = builder.unit(merge_src)
    store.link_units(pb, child, b)
    store.link_units(pa, child, a)
    builder.record(merge, child, 1)

    chain = resolver.chain(store.get_stage_record(merge, child, 1))

    assert keys(chain) == [(b, pb, 1), (a, pa, 1), (merge, child, 1)]


def test_link_from_unregistered_instance_is_ignored(store, builder, resolver):
    up, up_src = builder.instance("mapping", ["map"])
    other, other_src = builder.instance("other", ["x"])
    parent, stray = builder.unit(up_src), builder.unit(other_src)
    builder.record(up, parent, 1)

    down, down_src = builder.instance("calling", ["call"], upstream=[(up, 1)])
    child = builder.unit(down_src)
    store.link_units(parent, child, up)
    store.link_units(stray, child, other)
    builder.record(down, child, 1)

    chain = resolver.chain(store.get_stage_record(down, child, 1))

    assert keys(chain) == [(up, parent, 1), (down, child, 1)]


def test_chain_is_deterministic(store, builder, resolver):
    inst, src = builder.instance("m", ["a", "b"])
    unit = builder.unit(src)
    builder.record(inst, unit, 1)
    builder.record(inst, unit, 2)
    record = store.get_stage_record(inst, unit, 2)

    assert keys(resolver.chain(record)) == keys(resolver.chain(record))


def test_missing_own_stage_is_incomplete(store, builder, resolver):
    inst, src = builder.instance("m", ["a", "b"])
    unit = builder.unit(src)
    builder.record(inst, unit, 2)

    with pytest.raises(IncompleteLineage, match="1:a"):
        resolver.chain(store.get_stage_record(inst, unit, 2))


def test_incomplete_record_counts_as_missing(store, builder, resolver):
    inst, src = builder.instance("m", ["a", "b"])
    unit = builder.unit(src)
    builder.record(inst, unit, 1, complete=False)
    builder.record(inst, unit, 2)

    with pytest.raises(IncompleteLineage):
        resolver.chain(store.get_stage_record(inst, unit, 2))


def test_missing_upstream_stage_is_incomplete(store, builder, resolver):
    up, up_src = builder.instance("mapping", ["index", "map"])
    parent = builder.unit(up_src)
    builder.record(up, parent, 2)

    down, down_src = builder.instance("calling", ["call"], upstream=[(up, 2)])
    child = builder.unit(down_src)
    store.link_units(parent, child, up)
    builder.record(down, child, 1)

    with pytest.raises(IncompleteLineage):
        resolver.chain(store.get_stage_record(down, child, 1))


def test_source_paths_fall_back_to_parents(store, builder, resolver):
    up, up_src = builder.instance("mapping", ["map"])
    p1 = builder.unit(up_src, ["in/a_1.fq", "in/a_2.fq"])
    p2 = builder.unit(up_src, ["in/a_2.fq", "in/b.fq"])
    down, down_src = builder.instance("calling", ["call"], upstream=[(up, 1)])
    child = builder.unit(down_src)
    store.link_units(p1, child, up)
    store.link_units(p2, child, up)

    paths = resolver.source_paths(store.get_unit(child))

    assert paths == [builder.path("in/a_1.fq"), builder.path("in/a_2.fq"), builder.path("in/b.fq")]


def test_own_source_paths_win(store, builder, resolver):
    inst, src = builder.instance("m", ["a"])
    unit = builder.unit(src, ["in/x.fq"])
    assert resolver.source_paths(store.get_unit(unit)) == [builder.path("in/x.fq")]
