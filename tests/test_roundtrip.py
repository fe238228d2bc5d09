"""Round-trip tests: to_json followed by from_json."""

from dataclasses import dataclass, field
from typing import Any, Optional

from flexison import FlexisonBuilder, LoopPolicy

FLEXISON = FlexisonBuilder().set_loop_policy(LoopPolicy.JSOG).create()


def roundtrip(obj, annotation=object):
    """Convert an object to JSON text and back, returning the result."""
    return FLEXISON.from_json(FLEXISON.to_json(obj), annotation)


# ============================================================================
# Module-level classes for object tests (must be importable for class tags)
# ============================================================================


class SimpleObject:
    def __init__(self, x, y):
        self.x = x
        self.y = y


class InnerObject:
    def __init__(self, val):
        self.val = val


class OuterObject:
    def __init__(self, inner):
        self.inner = inner


@dataclass(eq=False)
class Employee:
    name: str
    manager: Optional["Employee"] = None
    reports: list["Employee"] = field(default_factory=list)


@dataclass
class Envelope:
    payload: Any = None
    extras: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Tests
# ============================================================================


class TestPrimitives:
    """Scalars come back unchanged without any annotation."""

    def test_int(self):
        assert roundtrip(42) == 42
        assert roundtrip(-1) == -1
        assert roundtrip(0) == 0

    def test_float(self):
        assert roundtrip(3.14) == 3.14
        assert roundtrip(-0.5) == -0.5

    def test_bool(self):
        assert roundtrip(True) is True
        assert roundtrip(False) is False

    def test_str(self):
        assert roundtrip("hello") == "hello"
        assert roundtrip("") == ""
        assert roundtrip("unicode: 你好 \U0001f389") == "unicode: 你好 \U0001f389"

    def test_none(self):
        assert roundtrip(None) is None


class TestCollections:
    """Untyped collections come back as lists and dicts; annotations restore the rest."""

    def test_list(self):
        assert roundtrip([1, 2, 3]) == [1, 2, 3]
        assert roundtrip([]) == []
        assert roundtrip([1, "two", 3.0, True, None]) == [1, "two", 3.0, True, None]

    def test_tuple(self):
        assert roundtrip((1, 2, 3)) == [1, 2, 3]
        assert roundtrip((1, 2, 3), tuple[int, ...]) == (1, 2, 3)
        assert roundtrip((1, "two", 3.0), tuple[int, str, float]) == (1, "two", 3.0)

    def test_dict(self):
        assert roundtrip({"a": 1, "b": 2}) == {"a": 1, "b": 2}
        assert roundtrip({1: 2, 3: 4}) == {"1": 2, "3": 4}
        assert roundtrip({1: 2, 3: 4}, dict[int, int]) == {1: 2, 3: 4}

    def test_nested_collections(self):
        nested = {"list": [1, 2, 3], "tuple": (4, 5, 6), "dict": {"a": "b"}}
        result = roundtrip(nested, dict[str, Any])
        assert result == {"list": [1, 2, 3], "tuple": [4, 5, 6], "dict": {"a": "b"}}


class TestObjects:
    """Objects are rebuilt from their class tag."""

    def test_simple_object(self):
        result = roundtrip(SimpleObject(1, "two"))
        assert isinstance(result, SimpleObject)
        assert result.x == 1
        assert result.y == "two"

    def test_nested_objects(self):
        result = roundtrip(OuterObject(InnerObject(123)))
        assert isinstance(result.inner, InnerObject)
        assert result.inner.val == 123

    def test_objects_inside_untyped_slots(self):
        result = roundtrip(Envelope(InnerObject(1), {"x": SimpleObject(2, 3)}))
        assert result.payload.val == 1
        assert result.extras["x"].y == 3


class TestReferenceCycles:
    """Identity and cycles between objects survive the round trip."""

    def test_shared_references(self):
        shared = InnerObject(7)
        result = roundtrip(SimpleObject(shared, shared))
        assert result.x is result.y
        assert result.x.val == 7

    def test_shared_references_in_list(self):
        shared = InnerObject(1)
        result = roundtrip([shared, shared, shared])
        assert result[0] is result[1]
        assert result[1] is result[2]

    def test_object_self_reference(self):
        obj = SimpleObject(1, None)
        obj.y = obj
        result = roundtrip(obj)
        assert result.y is result

    def test_tree_with_back_links(self):
        boss = Employee("ada")
        boss.reports = [Employee("bob", boss), Employee("cy", boss)]
        result = roundtrip(boss, Employee)
        assert [e.name for e in result.reports] == ["bob", "cy"]
        assert all(e.manager is result for e in result.reports)
