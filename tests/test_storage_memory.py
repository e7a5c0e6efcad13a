import re

import pytest

from conftest import make_feature
from models.errors import NotFound, StoreError
from storage import MemoryStorage, load_catalog

CATALOG = """\
features:
  - name: curl
    description: curl client
    author: ops
    snippet: |
      RUN apt-get install -y curl
    test_instruction: curl --version
  - name: java
    dependencies: [curl]
    updated_at: "2024-05-01T10:00:00+00:00"
    snippet: |
      COPY java.conf /etc/java.conf
    files:
      java.conf: "opts=-Xmx1g"
"""


def test_lookup(store):
    assert store.get_feature("B").snippet == "COPY f.txt /f.txt"
    assert store.get_meta("A").dependencies == ("B",)
    with pytest.raises(NotFound):
        store.get_meta("C")


def test_search_is_an_unanchored_regex(store):
    store = MemoryStorage([make_feature(n) for n in ("python3", "cpython", "java")])
    assert [m.name for m in store.search_meta("python")] == ["python3", "cpython"]
    assert [m.name for m in store.search_meta("^py")] == ["python3"]
    assert [m.name for m in store.search_meta(re.compile("a$"))] == ["java"]
    assert len(store.search_meta("")) == 3


def test_bad_search_pattern(store):
    with pytest.raises(ValueError):
        store.search_meta("(")


def test_duplicate_names_rejected():
    with pytest.raises(StoreError):
        MemoryStorage([make_feature("x"), make_feature("x")])


def test_catalog(tmp_path):
    path = tmp_path / "catalog.yml"
    path.write_text(CATALOG)
    store = load_catalog(path)

    assert len(store) == 2
    java = store.get_feature("java")
    assert java.meta.dependencies == ("curl",)
    assert java.meta.updated_at.year == 2024
    assert java.files == {"java.conf": b"opts=-Xmx1g"}
    assert store.get_meta("curl").author == "ops"
    assert store.resolve(["java"]).order == ["curl", "java"]


@pytest.mark.parametrize("content", [
    "features: {}",
    "- just a list",
    "features:\n  - description: no name",
    "features: [unterminated",
])
def test_bad_catalog(tmp_path, content):
    path = tmp_path / "catalog.yml"
    path.write_text(content)
    with pytest.raises(StoreError):
        load_catalog(path)


def test_missing_catalog(tmp_path):
    with pytest.raises(StoreError):
        load_catalog(tmp_path / "missing.yml")


def test_single_dependency_written_as_a_scalar(tmp_path):
    path = tmp_path / "catalog.yml"
    path.write_text("features:\n  - name: curl\n  - name: java\n    dependencies: curl\n")
    store = load_catalog(path)
    assert store.get_meta("java").dependencies == ("curl",)
    assert store.resolve(["java"]).order == ["curl", "java"]


def test_dependencies_of_the_wrong_type(tmp_path):
    path = tmp_path / "catalog.yml"
    path.write_text("features:\n  - name: java\n    dependencies: 7\n")
    with pytest.raises(StoreError, match="dependencies must be a list"):
        load_catalog(path)
