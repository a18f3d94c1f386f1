"""Tests for the command line interface."""

import json
import logging

from click.testing import CliRunner

from npmsentry.cli import EXIT_CLEAN, EXIT_ERROR, EXIT_ISSUES, main
from npmsentry.core.logging_config import ROOT_LOGGER_NAME


def _invoke(*args):
    return CliRunner().invoke(main, ["--no-npm-cache", "--concurrency", "1", *args])


class TestCli:
    """Exit codes and output formats."""

    def test_compromised_package_json_output(self, make_project, tmp_path):
        make_project(package_json={"dependencies": {"chalk": "5.6.1"}})

        result = _invoke(str(tmp_path), "--format", "json")

        assert result.exit_code == EXIT_ISSUES
        data = json.loads(result.stdout)
        assert data["summary"]["totalProjects"] == 1
        package = data["results"][0]["compromisedPackages"][0]
        assert (package["package"], package["version"]) == ("chalk", "5.6.1")
        assert data["results"][0]["summary"]["packagesChecked"] == 1
        assert data["remediation"]["overrides"] == {"chalk": "5.6.0"}

    def test_clean_project(self, make_project, tmp_path):
        make_project(
            package_json={"name": "app", "version": "1.0.0", "dependencies": {"chalk": "5.6.0"}},
            files={"index.js": "export {};"},
        )

        result = _invoke(str(tmp_path))

        assert result.exit_code == EXIT_CLEAN
        assert "No issues found." in result.stdout

    def test_malicious_code_text_output(self, make_project, tmp_path):
        make_project(package_json={}, files={"index.js": "window.fetch = function() {...}"})

        result = _invoke(str(tmp_path))

        assert result.exit_code == EXIT_ISSUES
        assert "Fetch/XMLHttpRequest Override" in result.stdout

    def test_skipping_code_scan(self, make_project, tmp_path):
        make_project(package_json={}, files={"index.js": "window.fetch = function() {...}"})

        result = _invoke(str(tmp_path), "--no-malicious-code")

        assert result.exit_code == EXIT_CLEAN

    def test_missing_directory(self, tmp_path):
        result = _invoke(str(tmp_path / "missing"))

        assert result.exit_code == EXIT_ERROR
        assert "does not exist" in result.output

    def test_invalid_config_file(self, tmp_path):
        config = tmp_path / "bad.json"
        config.write_text("{")

        result = _invoke(str(tmp_path), "--config", str(config))

        assert result.exit_code == EXIT_ERROR

    def test_config_file_settings(self, make_project, tmp_path):
        make_project(package_json={"dependencies": {"chalk": "5.6.1"}})
        config = tmp_path / "npmsentry.json"
        config.write_text(json.dumps({"security": {"scanCompromisedPackages": False}}))

        result = _invoke(str(tmp_path), "--config", str(config), "--format", "json")

        assert result.exit_code == EXIT_CLEAN
        assert json.loads(result.stdout)["results"][0]["compromisedPackages"] == []

    def test_output_file(self, make_project, tmp_path):
        make_project(package_json={})
        report = tmp_path / "report.json"

        result = _invoke(str(tmp_path), "--format", "json", "--output", str(report))

        assert result.exit_code == EXIT_CLEAN
        assert json.loads(report.read_text())["summary"]["scanned"] == 1
        assert "Report written to" in result.stdout

    def test_config_file_logging_is_kept(self, make_project, tmp_path):
        make_project(package_json={"name": "app", "version": "1.0.0"})
        config = tmp_path / "npmsentry.json"
        config.write_text(json.dumps({"logging": {"level": "ERROR"}}))

        result = _invoke(str(tmp_path), "--config", str(config))

        assert result.exit_code == EXIT_CLEAN
        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.ERROR

    def test_log_level_option_beats_config_file(self, make_project, tmp_path):
        make_project(package_json={"name": "app", "version": "1.0.0"})
        config = tmp_path / "npmsentry.json"
        config.write_text(json.dumps({"logging": {"level": "ERROR"}}))

        result = _invoke(str(tmp_path), "--config", str(config), "--log-level", "info")

        assert result.exit_code == EXIT_CLEAN
        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.INFO

    def test_default_log_level_without_config(self, make_project, tmp_path):
        make_project(package_json={"name": "app", "version": "1.0.0"})

        _invoke(str(tmp_path))

        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.WARNING

    def test_config_file_directory_is_kept(self, make_project, tmp_path):
        target = make_project("target", package_json={"dependencies": {"chalk": "5.6.1"}})
        config = tmp_path / "npmsentry.json"
        config.write_text(json.dumps({"directory": str(target)}))

        result = _invoke("--config", str(config), "--format", "json")

        assert result.exit_code == EXIT_ISSUES
        data = json.loads(result.stdout)
        assert [r["project"] for r in data["results"]] == ["target"]

    def test_markdown_output(self, make_project, tmp_path):
        make_project(package_json={"dependencies": {"chalk": "5.6.1"}})

        result = _invoke(str(tmp_path), "--format", "markdown")

        assert result.exit_code == EXIT_ISSUES
        assert result.stdout.startswith("# Security Scan Report")
        assert "| app | chalk | 5.6.1 | 5.6.0 | **CRITICAL** |" in result.stdout
        assert "## Package Validation Issues" in result.stdout

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "npmsentry" in result.output
