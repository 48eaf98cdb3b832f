"""Tests for reqtrace.lib.config and reqtrace.lib.envparse modules."""

import pytest
from pathlib import Path
from unittest.mock import patch

from reqtrace.lib import envparse
from reqtrace.lib.config import ProjectConfig, load_project_config
from reqtrace.lib.constants import DEFAULT_TEST_GLOBS


class TestParseEnv:
    """Tests for the KEY=value parser."""

    def test_basic(self):
        text = '# settings\nREQUIREMENTS_FILE=reqs.json\n\nID_PREFIX="AUTH"\nTEST_GLOB=\'**/*.spec.ts\'\n'
        assert envparse.parse_env(text) == {
            "REQUIREMENTS_FILE": "reqs.json",
            "ID_PREFIX": "AUTH",
            "TEST_GLOB": "**/*.spec.ts",
        }

    def test_missing_equals(self):
        with pytest.raises(ValueError, match="no '='"):
            envparse.parse_env("JUSTAKEY\n")

    def test_invalid_key(self):
        with pytest.raises(ValueError, match="Invalid key"):
            envparse.parse_env("lower=1\n")

    @pytest.mark.parametrize("value", ["$(rm -rf /)", "`id`", "a;b", "a && b", "a | b", "${HOME}"])
    def test_forbidden_patterns(self, value):
        with pytest.raises(ValueError, match="Forbidden pattern"):
            envparse.parse_env(f"KEY={value}\n")

    def test_load_env_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            envparse.load_env(tmp_path / "missing.env")


class TestLoadProjectConfig:
    """Tests for load_project_config."""

    def test_defaults_without_file(self, tmp_path):
        config = load_project_config(tmp_path)
        assert config.requirements_path == tmp_path / "requirements.json"
        assert config.archive_path == tmp_path / "requirements.archive.json"
        assert config.journal_path == tmp_path / ".requirements.journal.json"
        assert config.test_globs == DEFAULT_TEST_GLOBS
        assert config.scan_workers == 4
        assert config.id_prefix == "REQ"

    def test_reads_env_file(self, tmp_path):
        (tmp_path / "reqtrace.env").write_text(
            "REQUIREMENTS_FILE=docs/reqs.json\n"
            "ARCHIVE_FILE=docs/reqs.archive.json\n"
            "TEST_GLOB=src/**/*.spec.ts, e2e/**/*.test.ts\n"
            "SCAN_WORKERS=8\n"
            "ID_PREFIX=AUTH\n"
        )
        config = load_project_config(tmp_path)
        assert config.requirements_path == tmp_path / "docs" / "reqs.json"
        assert config.journal_path == tmp_path / "docs" / ".requirements.journal.json"
        assert config.test_globs == ["src/**/*.spec.ts", "e2e/**/*.test.ts"]
        assert config.scan_workers == 8
        assert config.id_prefix == "AUTH"

    @patch("reqtrace.lib.config.envparse.load_env")
    def test_invalid_workers_default_with_warning(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "reqtrace.env").write_text("")
        mock_load_env.return_value = {"SCAN_WORKERS": "zero"}
        config = load_project_config(tmp_path)
        assert config.scan_workers == 4
        assert "Invalid SCAN_WORKERS 'zero'" in caplog.text

    @patch("reqtrace.lib.config.envparse.load_env")
    def test_invalid_prefix_default_with_warning(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "reqtrace.env").write_text("")
        mock_load_env.return_value = {"ID_PREFIX": "req-"}
        config = load_project_config(tmp_path)
        assert config.id_prefix == "REQ"
        assert "Invalid ID_PREFIX 'req-'" in caplog.text

    def test_malformed_file_raises(self, tmp_path):
        (tmp_path / "reqtrace.env").write_text("not a setting\n")
        with pytest.raises(ValueError):
            load_project_config(tmp_path)

    def test_empty_glob_falls_back(self, tmp_path):
        (tmp_path / "reqtrace.env").write_text("TEST_GLOB=\n")
        assert load_project_config(tmp_path).test_globs == DEFAULT_TEST_GLOBS


class TestProjectConfig:
    """Tests for the ProjectConfig dataclass."""

    def test_defaults(self):
        config = ProjectConfig(root=Path("/fake/project"))
        assert config.requirements_file == "requirements.json"
        assert config.archive_file == "requirements.archive.json"
