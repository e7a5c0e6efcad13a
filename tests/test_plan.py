import json

import pytest

from activities.plan import build_plan, load_plan, write_plan
from conftest import make_feature
from models.errors import PlanCorrupt, PlanNotFound
from models.schemas import TestSpecEntry


def test_plan_follows_build_order(store):
    plan = build_plan(store.resolve(["A"]).ordered_features())
    assert plan == [
        TestSpecEntry(feature="B", cmd="test -f /f.txt"),
        TestSpecEntry(feature="A", cmd="false"),
    ]


def test_untested_features_keep_an_empty_entry():
    plan = build_plan([make_feature("x", test="  \n"), make_feature("y", test=" which y\n")])
    assert [(e.feature, e.cmd) for e in plan] == [("x", ""), ("y", "which y")]


def test_written_file_format(tmp_path, store):
    path = tmp_path / "out" / "test_spec.json"
    written = write_plan(path, build_plan(store.resolve(["A"]).ordered_features()))
    assert written == path
    assert json.loads(path.read_text()) == [
        {"feature": "B", "cmd": "test -f /f.txt"},
        {"feature": "A", "cmd": "false"},
    ]
    # indented, one field per line
    assert '\n    "feature": "B",' in path.read_text()


def test_load_what_was_written(tmp_path):
    plan = [TestSpecEntry(feature="a", cmd="echo 'quoted \"x\"'"), TestSpecEntry(feature="b", cmd="")]
    path = write_plan(tmp_path / "spec.json", plan)
    assert load_plan(path) == plan


def test_missing_file(tmp_path):
    with pytest.raises(PlanNotFound) as exc:
        load_plan(tmp_path / "nope.json")
    assert "nope.json" in str(exc.value)


@pytest.mark.parametrize("content", [
    "not json",
    '{"feature": "a", "cmd": "x"}',
    '[{"feature": "a"}]',
    '[{"feature": "a", "cmd": "x", "extra": 1}]',
    '[{"feature": "a", "cmd": 3}]',
])
def test_corrupt_file(tmp_path, content):
    path = tmp_path / "spec.json"
    path.write_text(content)
    with pytest.raises(PlanCorrupt) as exc:
        load_plan(path)
    assert exc.value.path == str(path)


def test_empty_list_is_a_valid_plan(tmp_path):
    path = tmp_path / "spec.json"
    path.write_text("[]")
    assert load_plan(path) == []
