"""Tests for global CLI options and error exits."""

import logging

from redohm.cli import app
from tests.cli.conftest import invoke


def test_version(runner):
    result = invoke(runner, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("redohm ")


def test_no_command_shows_help(runner):
    result = runner.invoke(app, [])
    assert "info" in result.output
    assert "verify" in result.output


def test_unreachable_store(runner):
    result = invoke(runner, ["--url", "redis://127.0.0.1:1/0", "info"])
    assert result.exit_code == 3
    assert "Cannot reach store" in result.output


def test_url_from_environment(runner, monkeypatch):
    seen = []

    def fake_client(url):
        seen.append(url)
        raise SystemExit(0)

    monkeypatch.setattr("redohm.cli._storage.create_client", fake_client)
    monkeypatch.setenv("REDOHM_URL", "redis://from-env:6379/2")
    runner.invoke(app, ["info"])
    assert seen == ["redis://from-env:6379/2"]


def test_verbose_enables_debug_logging(runner, cli_store, monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    result = invoke(runner, ["--verbose", "purge-scratch"])
    assert result.exit_code == 0
    assert calls and calls[0]["level"] == logging.DEBUG
