"""Shared test fixtures for redohm tests."""

from __future__ import annotations

import fakeredis
import pytest

from redohm import Counter, Database, Field, HasMany, ListOf, Model, Reference, SetOf
from redohm.config import RedohmConfig
from redohm.registry import Registry

registry = Registry()

# --- Test model types ---


class User(Model, registry=registry):
    email: Field[str] = Field(unique=True)
    fname: Field[str] = Field(index=True)
    lname: Field[str]
    city: Field[str] = Field(index=True)
    age: Field[int]
    active: Field[bool] = Field(default=True, index=True)
    points = Counter()
    favorites = SetOf("Post")
    reading = ListOf("Post")
    posts = HasMany("Post", reference="author")


class Post(Model, registry=registry):
    title: Field[str] = Field(index=True)
    slug: Field[str] = Field(unique=True)
    score: Field[float]
    author = Reference("User")


# --- Fixtures ---


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def client(server):
    """A fresh in-memory store client."""
    c = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield c
    c.close()


@pytest.fixture(params=["scripts", "locking"])
def db(request, client):
    """A Database bound to the test registry, once per persistence strategy."""
    config = RedohmConfig(use_scripts=request.param == "scripts", lock_timeout_ms=200)
    database = Database(client, registry=registry, config=config)
    database.setup()
    return database


@pytest.fixture
def scripted_db(client):
    database = Database(client, registry=registry, config=RedohmConfig(use_scripts=True))
    database.setup()
    return database


@pytest.fixture
def locking_db(client):
    config = RedohmConfig(use_scripts=False, lock_timeout_ms=200)
    database = Database(client, registry=registry, config=config)
    database.setup()
    return database


def scratch_keys(client) -> list[str]:
    return list(client.scan_iter(match="~:*"))
