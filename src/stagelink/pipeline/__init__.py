"""Pipeline modules.

- identity: File resolution through move indirections
- lineage: Cross-instance stage record chains
- selector: Output selection with deduplication
- paths: Destination path composition
- materializer: Idempotent symlink placement
- orchestrator: Materialization run controller
- report: Lineage report
"""

from stagelink.pipeline.identity import FileIdentityResolver
from stagelink.pipeline.lineage import LineageResolver
from stagelink.pipeline.selector import OutputSelector, SelectedOutput
from stagelink.pipeline.paths import PathComposer, Placement
from stagelink.pipeline.materializer import Materializer, Outcome
from stagelink.pipeline.orchestrator import MaterializationOrchestrator, RunSummary
from stagelink.pipeline.report import LineageReporter

__all__ = [
    "FileIdentityResolver",
    "LineageResolver",
    "OutputSelector",
    "SelectedOutput",
    "PathComposer",
    "Placement",
    "Materializer",
    "Outcome",
    "MaterializationOrchestrator",
    "RunSummary",
    "LineageReporter",
]
