"""Tests for coercing untyped values into declared types."""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from flexison import Flexison
from flexison.descriptors import TypeDescriptor
from flexison.errors import JsonSyntaxError, TypeMismatchError
from flexison.references import LateBinding, ReadReferences


@dataclass
class Point:
    x: int
    y: int


@dataclass
class Reading:
    value: int
    unit: str = "m"


@pytest.fixture
def coerce():
    coercer = Flexison().coercer

    def coerce(value, annotation, references=None):
        return coercer.coerce(
            value,
            TypeDescriptor.of(annotation),
            references if references is not None else ReadReferences(),
        )

    return coerce


class TestScalars:
    def test_catch_all_and_instances_pass_through(self, coerce):
        marker = object()
        assert coerce(marker, object) is marker
        assert coerce("x", str) == "x"
        assert coerce(None, int) is None

    def test_numbers(self, coerce):
        assert coerce(3, float) == 3.0 and isinstance(coerce(3, float), float)
        assert coerce(2.9, int) == 2
        assert coerce(1.5, Decimal) == Decimal("1.5")

    def test_bytes(self, coerce):
        assert coerce([104, 105], bytes) == b"hi"
        assert coerce([300, -1], bytes) == bytes([44, 255])

    def test_string_through_converter(self, coerce):
        assert coerce("42", int) == 42
        assert coerce("2.5", float) == 2.5

    def test_number_to_string(self, coerce):
        assert coerce(7, str) == "7"

    def test_single_element_array(self, coerce):
        assert coerce(["tom"], str) == "tom"
        assert coerce([5], int) == 5

    def test_mismatch(self, coerce):
        with pytest.raises(TypeMismatchError):
            coerce([1, 2], int)
        with pytest.raises(TypeMismatchError):
            coerce(True, list[int])
        with pytest.raises(TypeMismatchError):
            coerce(True, int)
        with pytest.raises(JsonSyntaxError):
            coerce("abc", int)


class TestContainers:
    def test_mapping(self, coerce):
        assert coerce({"1": "a", "2": 3}, dict[int, str]) == {1: "a", 2: "3"}

    def test_object_from_dict(self, coerce):
        assert coerce({"x": 1, "y": "2"}, Point) == Point(1, 2)

    def test_list(self, coerce):
        assert coerce([1, "2", 3.0], list[int]) == [1, 2, 3]

    def test_set_and_tuples(self, coerce):
        assert coerce([1, 2, 2], set[int]) == {1, 2}
        assert coerce(["1", 2], tuple[int, ...]) == (1, 2)
        assert coerce([1, "b"], tuple[str, str]) == ("1", "b")

    def test_fixed_tuple_length(self, coerce):
        with pytest.raises(TypeMismatchError, match="expected 2 elements"):
            coerce([1], tuple[int, int])

    def test_late_bindings_are_deferred(self, coerce):
        references = ReadReferences()
        values = coerce([LateBinding("1"), 2], list[int], references)
        assert values == [None, 2]
        references.register("1", 5)
        references.apply_pending()
        assert values == [5, 2]


class TestFieldUnwrapping:
    def test_array_into_scalar_field(self):
        flexison = Flexison()
        assert flexison.from_json('{"value":[4],"unit":["cm"]}', Reading) == Reading(4, "cm")

    def test_array_into_object_field(self):
        @dataclass
        class Wrapper:
            point: Point

        flexison = Flexison()
        assert flexison.from_json('{"point":[{"x":1,"y":2}]}', Wrapper).point == Point(1, 2)
