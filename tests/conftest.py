"""Shared fixtures: datatype documents and runtime builders."""

import pytest

from typeforge.bootstrap import Runtime, create_runtime
from typeforge.metadata.loader import parse_datatype
from typeforge.persistence.memory import MemoryStorage

AUTHOR = {
    "datatype": "author",
    "status": "published",
    "fields": [
        {"key": "name", "type": "string", "required": True},
        {"key": "email", "type": "string", "unique": True},
    ],
}

POST = {
    "datatype": "post",
    "status": "published",
    "fields": [
        {"key": "title", "type": "string", "required": True},
        {"key": "slug", "type": "string", "unique": True},
        {"key": "authorId", "type": "ref", "refTarget": "author", "onDelete": "restrict"},
        {
            "key": "tagIds",
            "type": "ref",
            "array": True,
            "refTarget": "tag",
            "onDelete": "setNull",
        },
    ],
}

TAG = {
    "datatype": "tag",
    "status": "published",
    "storage": "single",
    "fields": [{"key": "name", "type": "string", "required": True, "unique": True}],
}


def make_runtime(*docs, storage=None, limits=None) -> Runtime:
    """Register datatype documents (in the given load order) and build graph + hooks.

    Storage is not materialized; tests relying on unique indexes await
    ``runtime.registry.materialize_published()`` themselves.
    """
    runtime = create_runtime(storage or MemoryStorage(), limits)
    for doc in docs:
        runtime.registry.register(parse_datatype(doc, "test"))
    runtime.refresh()
    return runtime


@pytest.fixture
def runtime_factory():
    return make_runtime


@pytest.fixture
def blog():
    """author / post / tag runtime on in-memory storage."""
    return make_runtime(AUTHOR, POST, TAG)


@pytest.fixture
def blog_factory():
    """Build the blog runtime with extra datatypes and/or custom enrich limits."""

    def factory(*extra, storage=None, limits=None):
        return make_runtime(AUTHOR, POST, TAG, *extra, storage=storage, limits=limits)

    return factory
