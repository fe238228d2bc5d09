"""Tests for cycles, shared references and forward references."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pytest

from flexison import FlexisonBuilder, LoopPolicy
from flexison.errors import CircularReferenceError, JsonSyntaxError, UnresolvedReferenceError
from flexison.references import (
    FieldPatch,
    IndexPatch,
    LateBinding,
    ReadReferences,
    VisitState,
    WriteReferences,
)


@dataclass(eq=False)
class Node:
    name: str
    next: Optional[Node] = None


@dataclass(eq=False)
class Pair:
    left: Optional[Node] = None
    right: Optional[Node] = None


@dataclass
class Frozen:
    nodes: tuple[Node, ...] = ()


NODE = "test_references.Node"


@pytest.fixture
def jsog():
    return FlexisonBuilder().set_loop_policy(LoopPolicy.JSOG).create()


class TestJsog:
    def test_self_reference_is_written_as_ref(self, jsog):
        node = Node("a")
        node.next = node
        assert jsog.to_json(node) == f'{{"@class":"{NODE}","@id":"1","name":"a","next":{{"@ref":"1"}}}}'

    def test_self_reference_identity(self, jsog):
        node = Node("a")
        node.next = node
        copy = jsog.from_json(jsog.to_json(node))
        assert copy.name == "a"
        assert copy.next is copy

    def test_longer_cycle(self, jsog):
        a, b = Node("a"), Node("b")
        a.next, b.next = b, a
        copy = jsog.from_json(jsog.to_json(a), Node)
        assert copy.next.name == "b"
        assert copy.next.next is copy

    def test_shared_references(self, jsog):
        shared = Node("s")
        copy = jsog.from_json(jsog.to_json(Pair(shared, shared)), Pair)
        assert copy.left is copy.right

    def test_shared_references_in_untyped_list(self, jsog):
        shared = Node("s")
        copy = jsog.from_json(jsog.to_json([shared, shared]))
        assert copy[0] is copy[1]
        assert copy[0].name == "s"

    def test_forward_reference_in_field(self, jsog):
        text = '{"left":{"@id":"1","name":"a","next":{"@ref":"2"}},"right":{"@id":"2","name":"b"}}'
        pair = jsog.from_json(text, Pair)
        assert pair.left.next is pair.right

    def test_forward_reference_in_list(self, jsog):
        nodes = jsog.from_json('[{"@ref":"2"},{"@id":"2","name":"b"}]', list[Node])
        assert nodes[0] is nodes[1]

    def test_forward_reference_in_dict(self, jsog):
        nodes = jsog.from_json('{"x":{"@ref":"7"},"y":{"@id":"7","name":"b"}}', dict[str, Node])
        assert nodes["x"] is nodes["y"]

    def test_unresolvable_reference(self, jsog):
        with pytest.raises(UnresolvedReferenceError, match="Could not resolve ref '9'"):
            jsog.from_json('[{"@ref":"9"}]', list[Node])

    def test_forward_reference_in_tuple(self, jsog):
        text = '{"nodes":[{"@ref":"2"},{"@id":"2","name":"b"}]}'
        with pytest.raises(JsonSyntaxError, match="immutable"):
            jsog.from_json(text, Frozen)

    def test_ids_are_ignored_without_jsog(self):
        flexison = FlexisonBuilder().create()
        node = flexison.from_json('{"@id":"1","name":"a"}', Node)
        assert node.name == "a"


class TestLoopPolicies:
    def test_quiet_null(self):
        flexison = FlexisonBuilder.safe().set_loop_policy(LoopPolicy.QUIET_NULL).create()
        node = Node("a")
        node.next = node
        assert flexison.to_json(node) == '{"name":"a"}'

    def test_quiet_null_keeps_shared_references(self):
        flexison = FlexisonBuilder.safe().set_loop_policy(LoopPolicy.QUIET_NULL).create()
        shared = Node("s")
        assert flexison.to_json(Pair(shared, shared)) == '{"left":{"name":"s"},"right":{"name":"s"}}'

    def test_exception(self):
        flexison = FlexisonBuilder.safe().set_loop_policy(LoopPolicy.EXCEPTION).create()
        node = Node("a")
        node.next = node
        with pytest.raises(CircularReferenceError):
            flexison.to_json(node)


class TestBookkeeping:
    def test_write_states(self):
        references = WriteReferences(LoopPolicy.EXCEPTION)
        obj = object()
        assert references.state(obj) is VisitState.UNSEEN
        assert references.enter(obj)
        assert references.state(obj) is VisitState.IN_PROGRESS
        references.leave(obj)
        assert references.state(obj) is VisitState.COMPLETE

    def test_ids_are_sequential(self):
        references = WriteReferences(LoopPolicy.JSOG)
        a, b = object(), object()
        assert references.new_id(a) == "1"
        assert references.new_id(b) == "2"
        assert references.reference_for(a) == "1"

    def test_patches_apply_in_order(self):
        references = ReadReferences()
        target = [None, None]
        node = Node("x")
        references.defer(IndexPatch(target, "1", index=0))
        references.defer(FieldPatch(node, "1", field=_Setter("name")))
        references.register("1", "done")
        references.apply_pending()
        assert target == ["done", None]
        assert node.name == "done"
        assert references.pending == []

    def test_bind_resolves_known_ids(self):
        references = ReadReferences()
        references.register("1", "value")
        assert references.bind(LateBinding("1"), lambda ref: None) == "value"
        assert references.bind(3, lambda ref: None) == 3


class _Setter:
    def __init__(self, attribute):
        self.attribute = attribute

    def set(self, instance, value):
        setattr(instance, self.attribute, value)
