import pytest

from activities.resolve import resolve_features
from conftest import make_feature
from models.errors import CycleDetected, EmptyInput, NotFound
from storage import MemoryStorage


class CountingStore(MemoryStorage):
    def __init__(self, features):
        super().__init__(features)
        self.fetched: list[str] = []

    def get_feature(self, name):
        self.fetched.append(name)
        return super().get_feature(name)


def test_dependencies_come_first(store):
    resolved = resolve_features(store, ["A"])
    assert resolved.order == ["B", "A"]
    assert [f.name for f in resolved.ordered_features()] == ["B", "A"]


def test_shared_dependency_fetched_and_emitted_once():
    store = CountingStore([
        make_feature("app", deps=["web", "db"]),
        make_feature("web", deps=["base"]),
        make_feature("db", deps=["base"]),
        make_feature("base"),
    ])
    resolved = resolve_features(store, ["app"])
    assert resolved.order == ["base", "web", "db", "app"]
    assert store.fetched.count("base") == 1


def test_multiple_roots_keep_request_order():
    store = MemoryStorage([
        make_feature("x"), make_feature("y", deps=["z"]), make_feature("z"),
    ])
    assert resolve_features(store, ["x", "y"]).order == ["x", "z", "y"]
    # a root already pulled in as a dependency is not repeated
    assert resolve_features(store, ["y", "z"]).order == ["z", "y"]


def test_requested_twice():
    store = MemoryStorage([make_feature("x")])
    assert resolve_features(store, ["x", "x"]).order == ["x"]


def test_every_feature_follows_its_dependencies():
    store = MemoryStorage([
        make_feature("a", deps=["b", "c"]),
        make_feature("b", deps=["d"]),
        make_feature("c", deps=["d", "e"]),
        make_feature("d"),
        make_feature("e", deps=["d"]),
    ])
    resolved = resolve_features(store, ["a"])
    position = {name: i for i, name in enumerate(resolved.order)}
    assert len(position) == len(resolved.order) == 5
    for feature in resolved.ordered_features():
        for dep in feature.meta.dependencies:
            assert position[dep] < position[feature.name]


def test_empty_input(store):
    with pytest.raises(EmptyInput):
        resolve_features(store, [])


def test_missing_root(store):
    with pytest.raises(NotFound) as exc:
        resolve_features(store, ["nope"])
    assert exc.value.name == "nope"
    assert "nope" in str(exc.value)


def test_missing_transitive_dependency():
    store = MemoryStorage([make_feature("a", deps=["b"]), make_feature("b", deps=["ghost"])])
    with pytest.raises(NotFound) as exc:
        resolve_features(store, ["a"])
    assert exc.value.name == "ghost"


def test_cycle_is_reported_with_its_path():
    store = MemoryStorage([
        make_feature("a", deps=["b"]),
        make_feature("b", deps=["c"]),
        make_feature("c", deps=["a"]),
    ])
    with pytest.raises(CycleDetected) as exc:
        resolve_features(store, ["a"])
    assert exc.value.cycle == ["a", "b", "c", "a"]
    assert "a -> b -> c -> a" in str(exc.value)


def test_cycle_below_the_root():
    store = MemoryStorage([
        make_feature("top", deps=["a"]),
        make_feature("a", deps=["b"]),
        make_feature("b", deps=["a"]),
    ])
    with pytest.raises(CycleDetected) as exc:
        resolve_features(store, ["top"])
    assert exc.value.cycle == ["a", "b", "a"]


def test_self_dependency():
    store = MemoryStorage([make_feature("loop", deps=["loop"])])
    with pytest.raises(CycleDetected) as exc:
        resolve_features(store, ["loop"])
    assert exc.value.cycle == ["loop", "loop"]


def test_diamond_is_not_a_cycle():
    store = MemoryStorage([
        make_feature("a", deps=["b", "c"]),
        make_feature("b", deps=["d"]),
        make_feature("c", deps=["d"]),
        make_feature("d"),
    ])
    assert resolve_features(store, ["a"]).order == ["d", "b", "c", "a"]


def test_store_resolve_uses_the_same_algorithm(store):
    assert store.resolve(["A"]).order == ["B", "A"]
