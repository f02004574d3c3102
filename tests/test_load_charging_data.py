"""
Tests for the charging data loader script.
"""

import importlib.util
import os

import pytest

SCRIPT_PATH = os.path.join(os.path.dirname(__file__), "..", "scripts", "load_charging_data.py")


@pytest.fixture(scope="module")
def loader():
    spec = importlib.util.spec_from_file_location("load_charging_data", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestRun:
    """Test the ingest-then-rebuild pipeline"""

    def test_run(self, loader, db_session, data_dir):
        result = loader.run(db_session, data_dir=str(data_dir))

        assert result["ingest"]["events_inserted"] == 4
        assert result["rebuild"]["sessions_created"] == 2
        assert result["rebuild"]["complete_sessions"] == 1
        assert result["rebuild"]["profiles_created"] == 1

    def test_skip_import(self, loader, db_session):
        result = loader.run(db_session, skip_import=True)

        assert result["ingest"] is None
        assert result["rebuild"]["sessions_created"] == 0


class TestMain:
    """Test the command line entry point"""

    def test_loads_into_fresh_database(self, loader, tmp_path, data_dir, capsys):
        db_url = f"sqlite:///{tmp_path / 'charging.db'}"
        exit_code = loader.main(["--db", db_url, "--data-dir", str(data_dir), "--init-schema"])

        assert exit_code == 0
        output = capsys.readouterr().out
        assert "Events inserted: 4" in output
        assert "Anomalous users: 0" in output

    def test_missing_data_dir(self, loader, tmp_path, capsys):
        db_url = f"sqlite:///{tmp_path / 'charging.db'}"
        exit_code = loader.main(["--db", db_url, "--data-dir", str(tmp_path / "nowhere"), "--init-schema"])

        assert exit_code == 1
        assert "Data directory not found" in capsys.readouterr().out
