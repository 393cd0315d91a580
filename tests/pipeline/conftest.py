import pytest

from stagelink.core.models import File, InputUnit, StageMember
from stagelink.pipeline.selector import SelectedOutput


@pytest.fixture
def make_output():
    """Build a SelectedOutput without a store."""
    def _make(path, metadata=None, unit_paths=(), unit_id=1, file_id=1, kind="bam"):
        unit = InputUnit(unit_id, 1, tuple(unit_paths))
        member = StageMember(1, 1, "stage")
        return SelectedOutput(unit, member, kind, File(file_id, path, metadata=dict(metadata or {})))
    return _make
