"""Tests for the error taxonomy, invariant checks and error collection."""

import pytest

pytestmark = pytest.mark.unit

from stagelink.contracts import (
    AmbiguousInput,
    BrokenChain,
    ConfigValidationError,
    ContractViolation,
    ErrorReport,
    FailurePolicy,
    IncompleteLineage,
    LineageError,
    MissingMetadataKeys,
    NoCommonAncestor,
    SkippedConflict,
    StageLinkError,
    UnitSkipped,
    UnsafeDestination,
    require,
)


class TestTaxonomy:
    """Error classes sit where callers catch them."""

    @pytest.mark.parametrize("cls", [NoCommonAncestor, AmbiguousInput,
                                     MissingMetadataKeys, UnsafeDestination])
    def test_per_unit_errors_are_unit_skipped(self, cls):
        err = cls("unit 3: nope", unit_id=3)
        assert isinstance(err, UnitSkipped)
        assert isinstance(err, StageLinkError)
        assert err.unit_id == 3

    @pytest.mark.parametrize("cls", [BrokenChain, IncompleteLineage])
    def test_lineage_errors(self, cls):
        assert issubclass(cls, LineageError)
        assert not issubclass(cls, UnitSkipped)

    def test_config_error_is_also_value_error(self):
        with pytest.raises(ValueError):
            raise ConfigValidationError("bad")

    def test_conflict_keeps_destination(self):
        err = SkippedConflict("occupied", destination="/links/a.bam")
        assert err.destination == "/links/a.bam"


class TestRequire:

    def test_passes_silently(self):
        require(True, "never shown")

    def test_raises_contract_violation(self):
        with pytest.raises(ContractViolation, match="duplicate"):
            require(False, "duplicate record")


class TestErrorReport:

    def test_collects_and_describes(self):
        report = ErrorReport()
        report.add(NoCommonAncestor("no shared dir"), unit_id=7)
        report.add(SkippedConflict("occupied"), unit_id=8, path="/links/x")

        assert len(report) == 2
        assert bool(report)
        messages = report.messages()
        assert messages[0] == "[unit 7] NoCommonAncestor: no shared dir"
        assert messages[1] == "[unit 8, /links/x] SkippedConflict: occupied"

    def test_of_type_filters(self):
        report = ErrorReport()
        report.add(NoCommonAncestor("a"), 1)
        report.add(MissingMetadataKeys("b"), 2)
        report.add(SkippedConflict("c"), 3)

        assert [e.unit_id for e in report.of_type(UnitSkipped)] == [1, 2]
        assert [e.unit_id for e in report.of_type(SkippedConflict)] == [3]

    def test_empty_report_is_falsy(self):
        assert not ErrorReport()

    def test_fail_fast_reraises_after_recording(self):
        report = ErrorReport(FailurePolicy.FAIL_FAST)
        with pytest.raises(AmbiguousInput):
            report.add(AmbiguousInput("two inputs"), 4)
        assert len(report) == 1

    def test_policy_accepts_string(self):
        assert ErrorReport("fail_fast").policy is FailurePolicy.FAIL_FAST

    def test_errors_are_logged(self, caplog):
        report = ErrorReport()
        with caplog.at_level("WARNING"):
            report.add(BrokenChain("moved to missing record 9"), 2, "/data/a.bam")
        assert "moved to missing record 9" in caplog.text
