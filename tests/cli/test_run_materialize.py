"""Command-line materialization: argument handling and exit codes."""

import os

import pytest

pytestmark = pytest.mark.integration

from stagelink.cli.run_materialize import (
    EXIT_CONFIG,
    EXIT_ERRORS,
    EXIT_OK,
    main,
    run_materialization,
)


@pytest.fixture
def base_args(mapping_graph, db_path, output_root):
    return ["--database", str(db_path), "--instance", "exome_mapping",
            "--output-root", str(output_root)]


def test_group_by_run(base_args, output_root, store, mapping_graph):
    code = main(base_args + ["--group-by", "sample", "--as-output"])

    assert code == EXIT_OK
    link = output_root / "NA2" / "NA2.bam"
    assert os.readlink(link) == store.get_file(mapping_graph.bam2).path


def test_instance_by_numeric_id(base_args, mapping_graph, output_root):
    args = list(base_args)
    args[3] = str(mapping_graph.instance.id)

    assert main(args + ["--mirror-input", "--as-output"]) == EXIT_OK
    assert any(p.is_symlink() for p in output_root.rglob("*"))


def test_dry_run_prints_and_writes_nothing(base_args, output_root, capsys):
    code = main(base_args + ["--group-by", "sample", "--as-output", "--dry-run"])

    assert code == EXIT_OK
    rows = [line for line in capsys.readouterr().out.splitlines() if line]
    assert len(rows) == 6
    assert all("\t" in row for row in rows)
    assert not output_root.exists()


def test_print_only_with_checksum(base_args, capsys):
    code = main(base_args + ["--print-only", "--include-checksum", "--stage", "bwa_map|bam"])

    assert code == EXIT_OK
    rows = sorted(line for line in capsys.readouterr().out.splitlines() if line)
    assert [row.split("\t")[0].rsplit("/", 1)[1] for row in rows] == ["NA1.bam", "NA2.bam"]
    assert all(len(row.split("\t")[1]) == 32 for row in rows)


def test_metadata_filter(base_args, output_root):
    code = main(base_args + ["--group-by", "sample", "--as-output", "--filter", "sample=^NA2$"])

    assert code == EXIT_OK
    assert sorted(p.name for p in output_root.rglob("*") if p.is_symlink()) == [
        "NA2.bam", "NA2.bam.bai",
    ]


class TestExitCodes:

    def test_unknown_instance(self, base_args, capsys):
        args = list(base_args)
        args[3] = "no_such_pipeline"

        assert main(args + ["--mirror-input", "--as-output"]) == EXIT_CONFIG
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_database(self, tmp_path, capsys):
        code = main(["--database", str(tmp_path / "missing.db"), "--instance", "x",
                     "--output-root", str(tmp_path), "--mirror-input", "--as-output"])
        assert code == EXIT_CONFIG

    def test_missing_modes(self, base_args):
        assert main(base_args) == EXIT_CONFIG

    def test_unknown_stage(self, base_args, output_root):
        code = main(base_args + ["--mirror-input", "--as-output", "--stage", "no_such_stage"])
        assert code == EXIT_CONFIG
        assert not output_root.exists()

    def test_malformed_filter(self, base_args):
        assert main(base_args + ["--mirror-input", "--as-output", "--filter", "sample"]) == EXIT_CONFIG

    def test_runtime_value_error_is_not_a_config_error(self, base_args, monkeypatch):
        def broken(*args, **kwargs):
            raise ValueError("unexpected value deep in a run")
        monkeypatch.setattr("stagelink.cli.run_materialize.run_materialization", broken)

        with pytest.raises(ValueError, match="deep in a run"):
            main(base_args + ["--mirror-input", "--as-output"])

    def test_exclusive_modes_rejected_by_parser(self, base_args):
        with pytest.raises(SystemExit) as exc:
            main(base_args + ["--mirror-input", "--group-by", "sample", "--as-output"])
        assert exc.value.code == 2

    def test_conflicts_are_not_fatal_by_default(self, base_args, output_root):
        (output_root / "NA2").mkdir(parents=True)
        (output_root / "NA2" / "NA2.bam").write_text("real data")

        assert main(base_args + ["--group-by", "sample", "--as-output"]) == EXIT_OK
        assert (output_root / "NA2" / "NA2.bam").read_text() == "real data"

    def test_strict_exit(self, base_args, output_root):
        (output_root / "NA2").mkdir(parents=True)
        (output_root / "NA2" / "NA2.bam").write_text("real data")

        code = main(base_args + ["--group-by", "sample", "--as-output", "--strict-exit"])

        assert code == EXIT_ERRORS

    def test_fail_fast(self, base_args, output_root, capsys):
        (output_root / "NA1").mkdir(parents=True)
        (output_root / "NA1" / "NA1.bam").write_text("real data")

        code = main(base_args + ["--group-by", "sample", "--as-output", "--fail-fast"])

        assert code == EXIT_ERRORS
        assert "Aborted" in capsys.readouterr().err


class TestUserConfigFile:

    def test_config_file_with_cli_override(self, mapping_graph, db_path, output_root, tmp_path):
        config_file = tmp_path / "links_config.py"
        config_file.write_text(
            "CONFIG = {\n"
            f"    'DATABASE': {str(db_path)!r},\n"
            "    'INSTANCE': 'exome_mapping',\n"
            f"    'OUTPUT_ROOT': {str(output_root)!r},\n"
            "    'GROUP_BY': 'sample',\n"
            "    'AS_OUTPUT': True,\n"
            "    'NAME_REWRITES': [(r'\\.bam$', '.cram')],\n"
            "}\n"
        )

        code = run_materialization(str(config_file), {"stages": ["bwa_map|bam"]}, echo=None)

        assert code == EXIT_OK
        assert sorted(p.name for p in output_root.rglob("*") if p.is_symlink()) == [
            "NA1.cram", "NA2.cram",
        ]

    def test_missing_config_file(self, tmp_path):
        assert main([str(tmp_path / "nope.py"), "--print-only"]) == EXIT_CONFIG

    def test_config_file_without_config_dict(self, tmp_path):
        config_file = tmp_path / "empty_config.py"
        config_file.write_text("SETTINGS = {}\n")
        assert main([str(config_file), "--print-only"]) == EXIT_CONFIG
