"""Command-line smoke tests."""

import json

import pytest

from main import main


@pytest.fixture
def world_file(tmp_path, world_doc):
    path = tmp_path / "world.json"
    path.write_text(json.dumps(world_doc))
    return path


def test_validate_clean_world(world_file, capsys):
    assert main(["validate", str(world_file)]) == 0
    assert "Ember Keep: 3 warning(s)" in capsys.readouterr().out


def test_validate_reports_problems(tmp_path, world_doc, capsys):
    world_doc["entries"][3]["content"] = ""
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(world_doc))
    assert main(["validate", str(path)]) == 1
    assert "empty-content" in capsys.readouterr().out


def test_import_card(tmp_path):
    card = tmp_path / "card.json"
    card.write_text(json.dumps({"name": "Brann", "description": "A smith.", "first_mes": "Need a blade?"}))
    out = tmp_path / "world.json"
    assert main(["import", str(card), "-o", str(out)]) == 0
    doc = json.loads(out.read_text())
    assert doc["characters"][0]["name"] == "Brann"
    assert doc["settings"]["greeting"] == "Need a blade?"


def test_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit):
        main(["validate", str(tmp_path / "nope.json")])


def test_play_echo_writes_state(world_file, tmp_path, capsys):
    state_file = tmp_path / "state.json"
    assert main(["play", str(world_file), "I find coins. [gold: +5]", "--state", str(state_file), "--echo"]) == 0
    out = capsys.readouterr().out
    assert "I find coins." in out
    assert "gold: 10 -> 15" in out
    saved = json.loads(state_file.read_text())
    assert saved["variables"]["gold"] == 15
    assert saved["turnCount"] == 1

    assert main(["play", str(world_file), "[gold: +5]", "--state", str(state_file), "--echo"]) == 0
    assert json.loads(state_file.read_text())["turnCount"] == 2
