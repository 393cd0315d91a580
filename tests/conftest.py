"""Root-level pytest fixtures for the stagelink test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture, an on-disk provenance store, and a graph builder. Tests use
these fixtures instead of creating raw dict configs.
"""

import pytest
from types import SimpleNamespace
from pathlib import Path
import tempfile
import shutil

from stagelink.core import ProvenanceStore
from stagelink.schemas import ParamConfig, UserConfig, resolve_config

from tests.helpers.graph_builder import GraphBuilder


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def output_root(temp_dir):
    """Root of the link tree (not created; runs create it)."""
    return temp_dir / "links"


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "provenance.db"


@pytest.fixture
def store(db_path):
    """Empty on-disk provenance store, closed after the test."""
    s = ProvenanceStore(db_path)
    yield s
    s.close()


@pytest.fixture
def builder(store, temp_dir):
    """GraphBuilder writing real files under ``temp_dir/data``."""
    return GraphBuilder(store, temp_dir / "data")


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults."""
    return ParamConfig()


@pytest.fixture
def make_config(param_config, db_path, output_root):
    """Factory fixture for creating resolved test configs.

    Returns a callable that accepts UserConfig-compatible kwargs. The
    database and output root default to the test's own; an instance name
    and one mode of each kind must be given unless ``print_only`` is set
    through ``cli``.

    Examples
    --------
    >>> def test_grouped(make_config):
    ...     config = make_config(instance="mapping", group_by=["sample"], as_output=True)
    ...     assert config.directory.keys == ["sample"]
    """
    def _make(cli=None, **user_overrides):
        user_overrides.setdefault("database", str(db_path))
        user_overrides.setdefault("output_root", str(output_root))
        return resolve_config(param_config, UserConfig(**user_overrides), cli)

    return _make


# =============================================================================
# Graph Fixtures
# =============================================================================

@pytest.fixture
def mapping_graph(store, builder):
    """A three-stage mapping instance over two input units.

    unit1: two inputs under in/run1 (lane1, lane2); index, map and dedup ran.
    unit2: one input under in/run2; only map ran.
    """
    inst, src = builder.instance("exome_mapping", ["bwa_index", "bwa_map", "mark_duplicates"])
    unit1 = builder.unit(src, ["in/run1/lane1/NA1_1.fastq", "in/run1/lane2/NA1_2.fastq"])
    unit2 = builder.unit(src, ["in/run2/NA2.fastq"])

    idx1 = builder.file("out/u1/ref.idx")
    bam1 = builder.file("out/u1/NA1.bam", {"sample": "NA1", "lane": "1"})
    bai1 = builder.file("out/u1/NA1.bam.bai", {"sample": "NA1"})
    dedup1 = builder.file("out/u1/NA1.dedup.bam", {"sample": "NA1", "lane": "1"})
    bam2 = builder.file("out/u2/NA2.bam", {"sample": "NA2", "lane": "3"})
    bai2 = builder.file("out/u2/NA2.bam.bai", {"sample": "NA2"})

    builder.record(inst, unit1, 1, {"index": [idx1]}, command="bwa index ref.fa")
    builder.record(inst, unit1, 2, {"bam": [bam1], "bai": [bai1]}, command="bwa mem ref.fa")
    builder.record(inst, unit1, 3, {"bam": [dedup1]}, command="picard MarkDuplicates")
    builder.record(inst, unit2, 2, {"bam": [bam2], "bai": [bai2]}, command="bwa mem ref.fa")

    return SimpleNamespace(
        instance=store.get_instance(inst), source_id=src, unit1=unit1, unit2=unit2,
        idx1=idx1, bam1=bam1, bai1=bai1, dedup1=dedup1, bam2=bam2, bai2=bai2,
    )
