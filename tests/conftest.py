"""Shared fixtures for npmsentry tests."""

import json
import logging
from pathlib import Path

import pytest

from npmsentry.core.config import ScanConfig
from npmsentry.core.logging_config import ROOT_LOGGER_NAME
from npmsentry.signatures.database import SignatureDatabase

WEBHOOK_LITERAL = "webhook.site/bb8ca5f6-4175-45d2-b042-fc9ebb8170b7"
ATTACKER_ADDRESS = "0xFc4a4858bafef54D1b1d7697bfb5c52F4c166976"


@pytest.fixture(autouse=True)
def _reset_npmsentry_logger():
    """configure_logging() detaches the package logger from root; undo that per test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(scope="session")
def database():
    """The bundled signature database."""
    return SignatureDatabase.load()


def write_file(root: Path, relative: str, content: str | bytes) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def make_project(tmp_path):
    """Factory creating a project directory under tmp_path.

    ``package_json`` may be a dict (serialized), a raw string (written as is)
    or None (no manifest).
    """

    def _make(
        name: str = "app",
        package_json: dict | str | None = None,
        files: dict[str, str | bytes] | None = None,
    ) -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        if package_json is not None:
            content = package_json if isinstance(package_json, str) else json.dumps(package_json)
            write_file(root, "package.json", content)
        for relative, content in (files or {}).items():
            write_file(root, relative, content)
        return root

    return _make


@pytest.fixture
def scan_config(tmp_path):
    """Factory for a ScanConfig rooted at tmp_path with the npm cache scan off."""

    def _config(**options) -> ScanConfig:
        data = {
            "directory": str(tmp_path),
            "performance": {"max_concurrency": 2, "timeout": 30},
            "security": {"scan_npm_cache": False},
        }
        for key, value in options.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return ScanConfig.from_options(data)

    return _config
