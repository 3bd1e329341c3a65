"""Tests for the command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from flutter_sim_mcp.cli import main as cli_main

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv('LOAD_ENV_FILE', raising=False)
    monkeypatch.delenv('FLUTTER_COMMAND', raising=False)


def test_doctor_reports_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main.shutil, 'which', lambda command: f'/usr/local/bin/{command}')
    monkeypatch.setattr(sys, 'platform', 'darwin')

    result = runner.invoke(cli_main.app, ['doctor'])

    assert result.exit_code == 0
    assert 'flutter: /usr/local/bin/flutter' in result.output
    assert 'xcrun: /usr/local/bin/xcrun' in result.output


def test_doctor_fails_when_flutter_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main.shutil, 'which', lambda command: None if command == 'flutter' else '/usr/bin/xcrun')
    monkeypatch.setattr(sys, 'platform', 'darwin')

    result = runner.invoke(cli_main.app, ['doctor'])

    assert result.exit_code == 1
    assert 'flutter not found on PATH' in result.output


def test_serve_rejects_unknown_transport() -> None:
    result = runner.invoke(cli_main.app, ['serve', '--transport', 'websocket'])

    assert result.exit_code == 2


def test_serve_rejects_invalid_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('MAX_LOG_LINES', '0')

    result = runner.invoke(cli_main.app, ['serve'])

    assert result.exit_code == 1
