"""Tests for Context key bindings and UnknownKey."""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tempo_clusters import InputCluster
from tempo_foundation import Context, UnknownKey


class TestContext:

    def test_bind_and_require(self):
        ctx = Context()
        node = InputCluster().create_node()
        ctx.bind("print", node)
        assert ctx.require("print") is node
        assert ctx.get("print") is node

    def test_missing_key(self):
        ctx = Context()
        ctx.bind("a", 1)
        with pytest.raises(UnknownKey) as exc:
            ctx.require("b")
        assert exc.value.missing_key == "b"
        assert exc.value.index == {"a": 1}
        assert isinstance(exc.value, KeyError)

    def test_index_is_a_copy(self):
        ctx = Context()
        with pytest.raises(UnknownKey) as exc:
            ctx.require("x")
        ctx.bind("x", 1)
        assert exc.value.index == {}

    def test_get_default(self):
        assert Context().get("nope", 5) == 5

    def test_parent_fallback(self):
        parent = Context()
        parent.bind("shared", "p")
        child = Context(parent)
        child.bind("own", "c")
        assert child.get("shared") == "p"
        assert child.require("shared") == "p"
        assert child.get("own") == "c"
        assert parent.get("own") is None

    def test_child_shadows_parent(self):
        parent = Context()
        parent.bind("k", 1)
        child = Context(parent)
        child.bind("k", 2)
        assert child.require("k") == 2
