"""Tests for converter resolution and the factory chain."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Annotated, Optional

import pytest

from flexison import Converter, Flexison, FlexisonBuilder, JsonField, exact_factory, factory
from flexison.adapters import ScalarConverter
from flexison.converters import ConverterCell
from flexison.descriptors import TypeDescriptor
from flexison.errors import ConfigurationError
from flexison.registry import ConverterRegistry


@dataclass
class Tree:
    label: str
    children: list[Tree] = field(default_factory=list)


@dataclass
class Husband:
    name: str
    wife: Optional[Wife] = None


@dataclass
class Wife:
    name: str
    husband: Optional[Husband] = None


@dataclass
class Broken:
    other: Optional[Victim] = None
    a: Annotated[int, JsonField(name="dup")] = 0
    b: Annotated[int, JsonField(name="dup")] = 0


@dataclass
class Victim:
    back: Optional[Broken] = None


@dataclass
class Reading:
    value: int


class HexConverter(Converter):
    reads_arrays = False

    def read(self, reader):
        return int(reader.next_string(), 16)

    def write(self, writer, value):
        writer.value(hex(value))


class TestResolution:
    def test_converters_are_cached(self):
        flexison = Flexison()
        assert flexison.converter(Tree) is flexison.converter(Tree)
        assert flexison.converter(list[int]) is flexison.converter(list[int])

    def test_self_recursive_type(self):
        flexison = Flexison()
        tree = Tree("root", [Tree("a"), Tree("b", [Tree("c")])])
        text = flexison.to_json(tree)
        assert text == (
            '{"label":"root","children":[{"label":"a","children":[]},'
            '{"label":"b","children":[{"label":"c","children":[]}]}]}'
        )
        assert flexison.from_json(text, Tree) == tree

    def test_mutually_recursive_types(self):
        flexison = Flexison()
        couple = Husband("al", Wife("peg"))
        assert flexison.from_json(flexison.to_json(couple), Husband) == couple

    def test_nothing_claims_the_type(self):
        with pytest.raises(ConfigurationError, match="cannot handle int"):
            ConverterRegistry([]).resolve(int)


class TestConverterCell:
    def test_forwards_once_filled(self):
        cell = ConverterCell(TypeDescriptor(int))
        with pytest.raises(RuntimeError):
            cell.to_tree(1)
        cell.set_delegate(HexConverter())
        assert cell.to_tree(255) == "0xff"
        with pytest.raises(RuntimeError):
            cell.set_delegate(HexConverter())


class TestFactoryOrder:
    def test_user_converter_beats_builtins(self):
        flexison = FlexisonBuilder.safe().register_converter(int, HexConverter()).create()
        assert flexison.to_json(Reading(255)) == '{"value":"0xff"}'
        assert flexison.from_json('{"value":"0x10"}', Reading) == Reading(16)

    def test_configured_factories_in_registration_order(self):
        first = exact_factory(int, HexConverter())
        second = factory(lambda resolver, descriptor: None)
        flexison = FlexisonBuilder.safe().register_factory(first).register_factory(second).create()
        factories = flexison.registry.factories
        assert factories.index(first) < factories.index(second)
        assert factories.index(flexison.excluder) < factories.index(first)

    def test_resolve_skipping(self):
        hex_factory = exact_factory(int, HexConverter())
        flexison = FlexisonBuilder.safe().register_factory(hex_factory).create()
        assert isinstance(flexison.converter(int), HexConverter)
        assert isinstance(flexison.delegate_converter(hex_factory, int), ScalarConverter)

    def test_late_registration_evicts_cache(self):
        flexison = Flexison()
        assert flexison.to_json(Reading(255)) == '{"value":255}'
        flexison.register_converter(int, HexConverter())
        assert flexison.to_json(Reading(255)) == '{"value":"0xff"}'


class TestFailedResolution:
    def test_nothing_half_built_is_cached(self):
        flexison = Flexison()
        with pytest.raises(ConfigurationError, match="multiple JSON fields named 'dup'"):
            flexison.converter(Broken)
        assert flexison.registry.cached(TypeDescriptor(Victim)) is None
        with pytest.raises(ConfigurationError, match="multiple JSON fields named 'dup'"):
            flexison.to_json(Victim(Broken.__new__(Broken)))

    def test_nested_converters_are_published(self):
        flexison = Flexison()
        flexison.converter(Husband)
        assert flexison.registry.cached(TypeDescriptor(Wife)) is not None


class TestConcurrency:
    def test_parallel_conversions_share_the_cache(self):
        flexison = Flexison()
        workers = 8
        barrier = threading.Barrier(workers)

        def convert(i):
            barrier.wait()
            tree = Tree(f"root{i}", [Tree("a"), Tree("b", [Tree("c")])])
            couple = Husband(f"al{i}", Wife(f"peg{i}", Husband(f"ex{i}")))
            return (
                flexison.from_json(flexison.to_json(tree), Tree) == tree
                and flexison.from_json(flexison.to_json(couple), Husband) == couple
            )

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(convert, range(workers)))

        assert results == [True] * workers
        assert flexison.converter(Tree) is flexison.registry.cached(TypeDescriptor(Tree))
        assert flexison.converter(Wife) is flexison.converter(Wife)
