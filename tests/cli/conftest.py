"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import fakeredis
import pytest
from typer.testing import CliRunner

from redohm.cli import app

# Reuse the model types from the main conftest
from tests.conftest import Post, User

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_store(server, monkeypatch):
    """Point every CLI-created client at the in-memory test server."""
    monkeypatch.setattr(
        "redohm.cli._storage.create_client",
        lambda url: fakeredis.FakeRedis(server=server, decode_responses=True),
    )
    return server


@pytest.fixture
def seeded(cli_store, scripted_db):
    """A store with a few users and posts."""
    john = User.create(email="john@x.io", fname="John", city="Lisbon")
    jane = User.create(email="jane@x.io", fname="Jane", city="Porto")
    Post.create(title="Hello", slug="hello", author=john)
    john.favorites.add(Post.create(title="Bye", slug="bye", author=jane))
    return scripted_db


def invoke(runner: CliRunner, args: list[str]) -> "Result":
    """Invoke the CLI without swallowing unexpected exceptions."""
    return runner.invoke(app, args, catch_exceptions=False)
