"""
Unit tests for the command line entry point.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from shardload.core.utils.cli import validate_cli_arguments
from shardload.main import build_overrides, build_parser, main


@pytest.fixture
def input_file(csv_file_factory):
    return csv_file_factory([["1", "a"]])


class TestParser:
    def test_import_overrides(self, input_file):
        args = build_parser().parse_args(
            ["import", "--tables", "orders", "--separator", "|", "--block-size", "100", input_file]
        )
        overrides = build_overrides(args)

        assert overrides["producer"]["files"] == [input_file]
        assert overrides["producer"]["separator"] == "|"
        assert overrides["producer"]["block_size"] == 100
        assert overrides["producer"]["has_header"] is None
        assert overrides["consumer"]["operation"] == "insert"
        assert overrides["consumer"]["tables"] == ["orders"]
        assert overrides["checkpoint"]["resume"] is None

    def test_delete_with_no_resume(self, input_file):
        args = build_parser().parse_args(["delete", "--tables", "orders", "--no-resume", input_file])
        overrides = build_overrides(args)

        assert overrides["consumer"]["operation"] == "delete"
        assert overrides["checkpoint"]["resume"] is False

    def test_export_has_no_overrides(self):
        args = build_parser().parse_args(["export-ddl", "--output", "x.sql"])
        assert build_overrides(args) == {}


class TestValidation:
    def _args(self, *argv):
        return build_parser().parse_args(list(argv))

    def test_valid_arguments(self, input_file):
        validate_cli_arguments(self._args("import", "--tables", "orders", input_file))

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            validate_cli_arguments(self._args("import", "--tables", "orders", str(tmp_path / "none.csv")))

    def test_multi_char_separator_exits(self, input_file):
        with pytest.raises(SystemExit):
            validate_cli_arguments(self._args("import", "--tables", "orders", "--separator", "::", input_file))

    def test_columns_with_two_tables_exits(self, input_file):
        with pytest.raises(SystemExit):
            validate_cli_arguments(self._args("import", "--tables", "a,b", "--columns", "id", input_file))

    def test_tables_required(self, input_file):
        with pytest.raises(SystemExit):
            validate_cli_arguments(self._args("update", input_file))

    def test_export_tables_need_one_schema(self):
        with pytest.raises(SystemExit):
            validate_cli_arguments(self._args("export-ddl", "--schemas", "a,b", "--tables", "t"))
        validate_cli_arguments(self._args("export-ddl", "--schemas", "a", "--tables", "t,u"))


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out

    def test_unreachable_database(self, tmp_path):
        with patch("shardload.main.init_database", return_value=None):
            assert main(["--env-file", str(tmp_path / "none.env"), "export-ddl"]) == 1

    def test_failed_run_exits_non_zero(self, input_file, tmp_path):
        database = MagicMock()
        with patch("shardload.main.init_database", return_value=database), \
                patch("shardload.main.signal.signal") as mock_signal, \
                patch("shardload.main.JobOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run.return_value = SimpleNamespace(succeeded=False)
            code = main([
                "--env-file", str(tmp_path / "none.env"),
                "import", "--tables", "orders", "--checkpoint", str(tmp_path / "cp.json"), input_file,
            ])

        assert code == 1
        mock_signal.assert_called_once()
        database.dispose.assert_called_once()

    def test_successful_export(self, tmp_path):
        database = MagicMock()
        with patch("shardload.main.init_database", return_value=database), \
                patch("shardload.main.JobOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run.return_value = 3
            code = main(["--env-file", str(tmp_path / "none.env"), "export-ddl", "--output", str(tmp_path / "s.sql")])

        assert code == 0
        job = mock_orchestrator.call_args.args[0]
        assert job.get_name().startswith("DDL export")

    def test_export_selected_tables(self, tmp_path):
        with patch("shardload.main.init_database", return_value=MagicMock()), \
                patch("shardload.main.JobOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.run.return_value = 2
            main([
                "--env-file", str(tmp_path / "none.env"),
                "export-ddl", "--tables", "orders, customers", "--output", str(tmp_path / "t.sql"),
            ])

        job = mock_orchestrator.call_args.args[0]
        assert job.tables == ["orders", "customers"]
        assert job.schemas is None

    def test_init_catalog_creates_tables(self, tmp_path):
        database = MagicMock()
        with patch("shardload.main.init_database", return_value=database):
            assert main(["--env-file", str(tmp_path / "none.env"), "init-catalog"]) == 0
        database.create_tables.assert_called_once()
