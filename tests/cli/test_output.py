"""Tests for CLI output helpers."""

import json

from redohm.cli._output import print_error, print_object, print_table


def test_print_table_json(capsys):
    print_table(["type", "count"], [["User", 2], ["Post", 1]], json_mode=True)
    data = json.loads(capsys.readouterr().out)
    assert data[0] == {"type": "User", "count": 2}


def test_print_table_text(capsys):
    print_table(["type", "indices"], [["User", ["fname", "city"]], ["Post", []]])
    out = capsys.readouterr().out.splitlines()
    assert out[0].split() == ["type", "indices"]
    assert out[2].split() == ["User", "fname,city"]
    assert out[3].split() == ["Post", "-"]


def test_print_table_empty(capsys):
    print_table(["type"], [])
    assert capsys.readouterr().out == ""


def test_print_object_text(capsys):
    print_object({"key": "val"})
    assert "key: val" in capsys.readouterr().out


def test_print_error(capsys):
    print_error("boom")
    assert capsys.readouterr().err == "Error: boom\n"
