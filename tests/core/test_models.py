import re

import pytest

pytestmark = [pytest.mark.unit]

from stagelink.core.models import (
    File,
    PipelineInstance,
    Source,
    SourceKind,
    StageMember,
    UpstreamFeed,
    metadata_matches,
)


def test_file_basename():
    assert File(1, "/data/out/NA1.sorted.bam").basename == "NA1.sorted.bam"


def test_update_stats_from_disk(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"12345")
    f = File(1, str(path))

    f.update_stats_from_disk()

    assert f.exists is True
    assert f.size == 5


def test_update_stats_missing_file(tmp_path):
    f = File(1, str(tmp_path / "gone.txt"), size=10, exists=True)

    f.update_stats_from_disk()

    assert f.exists is False
    assert f.size == 0


def test_instance_members_up_to():
    inst = PipelineInstance(1, "m", 1, (
        StageMember(1, 3, "c"), StageMember(1, 1, "a"), StageMember(1, 2, "b"),
    ))
    assert [sm.stage_name for sm in inst.members_up_to(2)] == ["a", "b"]
    assert inst.member(3).describe() == "3:c"
    assert inst.member(4) is None


def test_source_feed_lookup():
    src = Source(5, SourceKind.PIPELINE_OUTPUTS, (UpstreamFeed(1, 3), UpstreamFeed(2, 1)))
    assert src.is_derived
    assert src.feed_for(2).stage_position == 1
    assert src.feed_for(9) is None
    assert not Source(6, SourceKind.PATHS).is_derived


class TestMetadataMatches:

    def test_empty_filter_matches_everything(self):
        assert metadata_matches({}, {})

    def test_substring_regex(self):
        assert metadata_matches({"sample": "xxNA12878"}, {"sample": re.compile("NA128")})

    def test_missing_key_never_matches(self):
        assert not metadata_matches({"lane": "1"}, {"sample": re.compile(".*")})

    def test_every_key_must_match(self):
        filters = {"sample": re.compile("^NA"), "lane": re.compile("^2$")}
        assert metadata_matches({"sample": "NA1", "lane": "2"}, filters)
        assert not metadata_matches({"sample": "NA1", "lane": "3"}, filters)
