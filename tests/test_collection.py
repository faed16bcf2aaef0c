"""Tests for collections, set algebra and scratch-key cleanup."""

from __future__ import annotations

import pytest

from redohm.collection import Collection, MultiSet, Set, sort_options
from redohm.command import Command, evaluate
from redohm.errors import IndexNotFoundError
from redohm.keys import KeyNamespace
from tests.conftest import Post, User, scratch_keys


@pytest.fixture
def people(db):
    return [
        User.create(email="john@x.io", fname="John", lname="Doe", city="Lisbon", age=30),
        User.create(email="jane@x.io", fname="Jane", lname="Roe", city="Lisbon", age=25),
        User.create(email="js@x.io", fname="John", lname="Smith", city="Porto", age=40),
        User.create(
            email="mary@x.io", fname="Mary", lname="Major", city="Rome", age=35, active=False
        ),
    ]


def ids(collection) -> set[str]:
    return set(collection.ids())


class TestSortOptions:
    def test_order_tokens(self):
        assert sort_options("ALPHA DESC") == {"alpha": True, "desc": True}
        assert sort_options("asc") == {}

    def test_limit(self):
        assert sort_options(limit=(2, 5)) == {"start": 2, "num": 5}

    def test_unknown_token(self):
        with pytest.raises(ValueError):
            sort_options("SIDEWAYS")


class TestCollectionBase:
    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError, match="abstract"):
            Collection()


class TestCommand:
    def test_build_single_operand(self):
        assert Command.build("sinterstore", "a") == "a"

    def test_build_many(self):
        assert Command.build("sinterstore", "a", "b") == Command("sinterstore", "a", "b")

    def test_rejects_unknown_operation(self):
        with pytest.raises(ValueError):
            Command("del", "a")

    def test_nested_evaluation_records_scratch(self, client):
        client.sadd("a", "1", "2", "3")
        client.sadd("b", "2", "3")
        client.sadd("c", "3")
        command = Command("sdiffstore", Command("sinterstore", "a", "b"), "c")
        scratch: list[str] = []

        key = evaluate(command, KeyNamespace("User"), client, scratch)

        assert client.smembers(key) == {"2"}
        assert len(scratch) == 2
        Command.clean(client, scratch)
        assert scratch == []
        assert scratch_keys(client) == []

    def test_plain_key_evaluates_to_itself(self, client):
        scratch: list[str] = []
        assert evaluate("User:all", KeyNamespace("User"), client, scratch) == "User:all"
        assert scratch == []


class TestFind:
    def test_single_criterion_is_the_index(self, people):
        found = User.find(fname="John")
        assert isinstance(found, Set)
        assert found.key == "User:indices:fname:John"
        assert ids(found) == {people[0].id, people[2].id}

    def test_intersection(self, people, client):
        found = User.find(fname="John", city="Lisbon")
        assert isinstance(found, MultiSet)
        assert found.to_list() == [people[0]]
        assert scratch_keys(client) == []

    def test_multi_valued_criterion_is_a_union(self, people, client):
        found = User.find(city=["Lisbon", "Rome"])
        assert ids(found) == {people[0].id, people[1].id, people[3].id}
        assert scratch_keys(client) == []

    def test_union_inside_intersection(self, people):
        assert ids(User.find(fname="John", city=("Lisbon", "Porto"))) == {
            people[0].id,
            people[2].id,
        }

    def test_bool_criterion(self, people):
        assert ids(User.find(active=False)) == {people[3].id}
        assert len(User.find(active=True)) == 3

    def test_chained_find(self, people, client):
        found = User.find(city="Lisbon").find(fname="Jane")
        assert found.to_list() == [people[1]]
        assert scratch_keys(client) == []

    def test_except(self, people):
        assert ids(User.find(city="Lisbon").except_(fname="John")) == {people[1].id}

    def test_union(self, people):
        assert ids(User.find(city="Rome").union(fname="Jane")) == {people[1].id, people[3].id}

    def test_all_except(self, people):
        assert ids(User.all().except_(city="Lisbon")) == {people[2].id, people[3].id}

    def test_no_match(self, people):
        found = User.find(fname="Nobody")
        assert found.empty()
        assert not found
        assert found.to_list() == []

    def test_unindexed_attribute(self, people, client):
        with pytest.raises(IndexNotFoundError) as exc:
            User.find(fname="John", lname="Doe")
        assert exc.value.attribute == "lname"
        assert scratch_keys(client) == []

    def test_empty_criteria(self, db):
        with pytest.raises(ValueError):
            User.find()

    def test_none_criterion(self, db):
        with pytest.raises(ValueError):
            User.find(city=None)

    def test_scratch_removed_when_read_fails(self, people, client, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("read failed")

        monkeypatch.setattr(client, "scard", boom)
        with pytest.raises(RuntimeError):
            User.find(fname="John", city="Lisbon").size()
        assert scratch_keys(client) == []

    def test_membership(self, people):
        assert people[0] in User.find(city="Lisbon")
        assert people[2] not in User.find(city="Lisbon")
        assert User.find(city="Lisbon").get(people[2].id) is None
        assert User.find(city="Lisbon").get(people[1].id) == people[1]


class TestSorting:
    def test_sort_ids(self, people):
        assert [u.id for u in User.all().sort(order="DESC")] == ["4", "3", "2", "1"]

    def test_sort_by_attribute(self, people):
        names = [u.fname for u in User.all().sort_by("fname", order="ALPHA")]
        assert names == ["Jane", "John", "John", "Mary"]

    def test_sort_by_with_limit(self, people):
        found = User.all().sort_by("age", order="DESC", limit=(0, 2))
        assert [u.age for u in found] == [40, 35]

    def test_sort_get(self, people):
        assert User.find(city="Lisbon").sort_by("age", get="fname") == ["Jane", "John"]

    def test_sort_by_counter(self, people):
        people[2].incr("points", 5)
        people[0].incr("points", 2)
        found = User.all().sort_by("points", order="DESC", limit=(0, 2))
        assert found == [people[2], people[0]]

    def test_first(self, people, client):
        assert User.find(city="Lisbon").first(by="age") == people[1]
        assert User.find(fname="John", city="Porto").first() == people[2]
        assert User.find(fname="Nobody").first() is None
        assert scratch_keys(client) == []

    def test_sort_by_unknown_attribute(self, people):
        with pytest.raises(IndexNotFoundError):
            User.all().sort_by("height")


class TestIteration:
    def test_iterates_in_batches(self, client):
        from redohm import Database
        from redohm.config import RedohmConfig
        from tests.conftest import registry

        Database(client, registry=registry, config=RedohmConfig(fetch_batch_size=2)).setup()
        created = [User.create(fname=f"u{i}") for i in range(5)]
        assert sorted(User.all(), key=lambda u: int(u.id)) == created

    def test_fetch_preserves_order(self, people):
        assert User.fetch(["3", "1"]) == [people[2], people[0]]

    def test_fetch_empty(self, db):
        assert User.fetch([]) == []

    def test_len(self, people):
        assert len(User.all()) == 4


class TestMutableSet:
    def test_add_and_delete(self, people):
        user = people[0]
        a = Post.create(title="A", slug="a")
        b = Post.create(title="B", slug="b")
        user.favorites.add(a)
        user.favorites.add(b)
        user.favorites.add(a)

        assert user.favorites.size() == 2
        assert a in user.favorites
        user.favorites.delete(a)
        assert user.favorites.to_list() == [b]

    def test_replace(self, people):
        user = people[0]
        posts = [Post.create(title=t, slug=t) for t in ("a", "b", "c")]
        user.favorites.add(posts[0])
        user.favorites.replace(posts[1:])
        assert ids(user.favorites) == {posts[1].id, posts[2].id}
        user.favorites.replace([])
        assert user.favorites.empty()

    def test_find_within(self, people, client):
        user = people[0]
        a = Post.create(title="Hello", slug="a")
        Post.create(title="Hello", slug="b")
        user.favorites.add(a)
        assert user.favorites.find(title="Hello").to_list() == [a]
        assert scratch_keys(client) == []

    def test_key(self, people):
        assert people[0].favorites.key == "User:1:favorites"

    def test_unsaved_owner_is_rejected(self, db):
        from redohm.errors import MissingIdentityError

        with pytest.raises(MissingIdentityError):
            User(fname="New").favorites


class TestListCollection:
    def test_push_and_unshift(self, people):
        user = people[0]
        a, b, c = (Post.create(title=t, slug=t) for t in ("a", "b", "c"))
        user.reading.push(b)
        user.reading.push(c)
        user.reading.unshift(a)

        assert user.reading.to_list() == [a, b, c]
        assert user.reading.first() == a
        assert user.reading.last() == c
        assert user.reading.size() == 3

    def test_duplicates_and_delete(self, people):
        user = people[0]
        a = Post.create(title="a", slug="a")
        b = Post.create(title="b", slug="b")
        for post in (a, b, a):
            user.reading.push(post)
        assert user.reading.ids() == [a.id, b.id, a.id]

        user.reading.delete(a)
        assert user.reading.to_list() == [b]
        assert a not in user.reading

    def test_replace(self, people):
        user = people[0]
        a = Post.create(title="a", slug="a")
        b = Post.create(title="b", slug="b")
        user.reading.push(a)
        user.reading.replace([b, a])
        assert user.reading.ids() == [b.id, a.id]

    def test_empty_list(self, people):
        assert people[0].reading.first() is None
        assert people[0].reading.last() is None
        assert people[0].reading.empty()
