"""
Built-in converters for the flexison library.

This module contains the converters that sit between the user factories
and the reflective fallback in the factory chain:

- ScalarConverter: str, bool, int, float, Decimal, bytes, UUID and the
  datetime family, plus None
- EnumConverter: enum members by name
- ClassConverter: classes by qualified name
- SequenceConverter: list, tuple (homogeneous, fixed and named), set,
  frozenset, deque and the abstract collection ABCs
- MappingConverter: dict and other mappings, with optional complex keys
- DocumentConverter: ``object``/``Any`` as an untyped JSON value

Numbers are read leniently: a quoted number reads as a number, and a blank
string reads as None.
"""

from __future__ import annotations

import base64
import collections.abc
import datetime
import enum
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable

from flexison.classes import load_class, qualified_name
from flexison.constructors import ConstructorRegistry, ObjectConstructor
from flexison.converters import Converter, ConverterFactory, RuntimeTypeConverter
from flexison.descriptors import OBJECT, TypeDescriptor
from flexison.errors import JsonSyntaxError
from flexison.fields import type_hints
from flexison.references import IndexPatch, KeyPatch, LateBinding, MemberPatch
from flexison.stream import Token, TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.registry import ConverterRegistry, Resolver


class LongSerializationPolicy(enum.Enum):
    """How integers are written."""

    DEFAULT = "default"
    STRING = "string"


# =============================================================================
# Scalars
# =============================================================================


class ScalarConverter(Converter):
    """
    Converter for a type written as a single JSON scalar.

    Args:
        cls: The converted type.
        read_value: Reads a non-null value from the reader.
        write_value: Turns a value into a JSON scalar.
    """

    reads_arrays = False

    def __init__(
        self,
        cls: type,
        read_value: Callable[[TokenReader], Any],
        write_value: Callable[[Any], Any],
    ):
        self.cls = cls
        self._read_value = read_value
        self._write_value = write_value

    def read(self, reader: TokenReader) -> Any:
        if reader.peek() is Token.NULL:
            reader.next_null()
            return None
        return self._read_value(reader)

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        writer.value(self._write_value(value))

    def __repr__(self) -> str:
        return f"ScalarConverter({self.cls.__qualname__})"


def _blank_or(read_number: Callable[[TokenReader], Any]) -> Callable[[TokenReader], Any]:
    """Read a blank string as None, anything else with ``read_number``."""

    def read(reader: TokenReader) -> Any:
        if reader.peek() is Token.STRING:
            probe = reader.short_term_copy()
            if not probe.next_string().strip():
                reader.next_string()
                return None
        return read_number(reader)

    return read


def _read_str(reader: TokenReader) -> str:
    if reader.peek() is Token.BOOLEAN:
        return "true" if reader.next_boolean() else "false"
    return reader.next_string()


def _read_bool(reader: TokenReader) -> bool:
    token = reader.peek()
    if token is Token.STRING:
        return reader.next_string().strip().lower() == "true"
    if token is Token.NUMBER:
        return reader.next_int() != 0
    return reader.next_boolean()


def _read_decimal(reader: TokenReader) -> Decimal:
    path = reader.path()
    text = reader.next_string()
    try:
        return Decimal(text)
    except InvalidOperation:
        raise JsonSyntaxError(f"Expected a decimal but was {text!r} at path {path}") from None


def _parsing(parse: Callable[[str], Any], kind: str) -> Callable[[TokenReader], Any]:
    """Read a string and parse it, reporting failures as syntax errors."""

    def read(reader: TokenReader) -> Any:
        path = reader.path()
        text = reader.next_string()
        try:
            return parse(text)
        except ValueError:
            raise JsonSyntaxError(f"Expected {kind} but was {text!r} at path {path}") from None

    return read


def _read_none(reader: TokenReader) -> None:
    raise JsonSyntaxError(f"Expected NULL but was {reader.peek().value} at path {reader.path()}")


def scalar_converters(long_serialization: LongSerializationPolicy) -> dict[type, Converter]:
    """The scalar converters, keyed by the exact class they handle."""
    if long_serialization is LongSerializationPolicy.STRING:
        write_int = str
    else:
        write_int = int

    return {
        str: ScalarConverter(str, _read_str, str),
        bool: ScalarConverter(bool, _read_bool, bool),
        int: ScalarConverter(int, _blank_or(TokenReader.next_int), write_int),
        float: ScalarConverter(float, _blank_or(TokenReader.next_float), float),
        Decimal: ScalarConverter(Decimal, _blank_or(_read_decimal), str),
        bytes: ScalarConverter(
            bytes,
            _parsing(lambda s: base64.b64decode(s, validate=True), "base64"),
            lambda b: base64.b64encode(b).decode("ascii"),
        ),
        uuid.UUID: ScalarConverter(uuid.UUID, _parsing(uuid.UUID, "a UUID"), str),
        datetime.datetime: ScalarConverter(
            datetime.datetime,
            _parsing(datetime.datetime.fromisoformat, "an ISO datetime"),
            datetime.datetime.isoformat,
        ),
        datetime.date: ScalarConverter(
            datetime.date,
            _parsing(datetime.date.fromisoformat, "an ISO date"),
            datetime.date.isoformat,
        ),
        datetime.time: ScalarConverter(
            datetime.time,
            _parsing(datetime.time.fromisoformat, "an ISO time"),
            datetime.time.isoformat,
        ),
        datetime.timedelta: ScalarConverter(
            datetime.timedelta,
            lambda reader: datetime.timedelta(seconds=reader.next_float()),
            datetime.timedelta.total_seconds,
        ),
        type(None): ScalarConverter(type(None), _read_none, lambda v: None),
    }


class ScalarFactory(ConverterFactory):
    """Claims the exact classes in ``scalar_converters()``."""

    def __init__(self, long_serialization: LongSerializationPolicy = LongSerializationPolicy.DEFAULT):
        self.converters = scalar_converters(long_serialization)

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        return self.converters.get(descriptor.raw)

    def __repr__(self) -> str:
        return "ScalarFactory()"


# =============================================================================
# Enums and Classes
# =============================================================================


class EnumConverter(Converter):
    """Writes enum members by name; reads a name, falling back to a value."""

    reads_arrays = False

    def __init__(self, cls: type[enum.Enum]):
        self.cls = cls

    def read(self, reader: TokenReader) -> Any:
        if reader.peek() is Token.NULL:
            reader.next_null()
            return None
        path = reader.path()
        token = reader.peek()
        raw = reader.read_tree()
        if token is Token.STRING and raw in self.cls.__members__:
            return self.cls.__members__[raw]
        try:
            return self.cls(raw)
        except (ValueError, TypeError):
            raise JsonSyntaxError(
                f"{raw!r} is not a member of {self.cls.__qualname__} at path {path}"
            ) from None

    def write(self, writer: TokenWriter, value: Any) -> None:
        writer.value(None if value is None else value.name)


class EnumFactory(ConverterFactory):
    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if descriptor.is_subclass(enum.Enum):
            return EnumConverter(descriptor.raw)
        return None

    def __repr__(self) -> str:
        return "EnumFactory()"


class ClassConverter(Converter):
    """Writes a class as its qualified name and resolves it on the way back."""

    reads_arrays = False

    def __init__(self, load: Callable[[str], type | None] = load_class):
        self.load = load

    def read(self, reader: TokenReader) -> Any:
        if reader.peek() is Token.NULL:
            reader.next_null()
            return None
        return self.load(reader.next_string())

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        name = qualified_name(value)
        if name is None:
            raise ValueError(f"{value!r} cannot be written: it is not importable by name")
        writer.value(name)


class ClassFactory(ConverterFactory):
    def __init__(self, load: Callable[[str], type | None] = load_class):
        self.converter = ClassConverter(load)

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if descriptor.raw is type:
            return self.converter
        return None

    def __repr__(self) -> str:
        return "ClassFactory()"


# =============================================================================
# Sequences
# =============================================================================


class SequenceConverter(Converter):
    """
    Converter for array-shaped containers.

    Mutable containers are filled in place, so forward references inside
    them can be patched later. Tuples and frozensets are built once all
    elements are known; a forward reference inside one is an error.
    """

    def __init__(
        self,
        descriptor: TypeDescriptor,
        elements: list[Converter],
        constructor: ObjectConstructor,
        fixed: bool = False,
    ):
        self.descriptor = descriptor
        self.elements = elements
        self.constructor = constructor
        self.fixed = fixed
        self.immutable = descriptor.is_subclass((tuple, frozenset))

    def _element(self, index: int, path: str) -> Converter:
        if not self.fixed:
            return self.elements[0]
        if index >= len(self.elements):
            raise JsonSyntaxError(f"Too many elements for {self.descriptor} at path {path}")
        return self.elements[index]

    def read(self, reader: TokenReader) -> Any:
        if reader.peek() is Token.NULL:
            reader.next_null()
            return None
        references = reader.references
        items: list = []
        container = None if self.immutable else self.constructor.construct()
        reader.begin_array()
        while reader.has_next():
            path = reader.path()
            value = self._element(len(items), path).read(reader)
            if container is None:
                if isinstance(value, LateBinding):
                    value = references.resolve_now(value, path)
            elif hasattr(container, "append"):
                value = references.bind(
                    value, lambda ref, index=len(items): IndexPatch(container, ref, index=index)
                )
                container.append(None if isinstance(value, LateBinding) else value)
            else:
                value = references.bind(value, lambda ref: MemberPatch(container, ref))
                if not isinstance(value, LateBinding):
                    container.add(value)
            items.append(value)
        reader.end_array()
        if self.fixed and len(items) != len(self.elements):
            raise JsonSyntaxError(
                f"Expected {len(self.elements)} elements for {self.descriptor} "
                f"but was {len(items)} at path {reader.path()}"
            )
        if container is not None:
            return container
        raw = self.descriptor.raw
        if hasattr(raw, "_make"):
            return raw._make(items)
        return raw(items)

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        writer.begin_array()
        for index, item in enumerate(value):
            self._element(index, "").write(writer, item)
        writer.end_array()


class SequenceFactory(ConverterFactory):
    """Claims collections other than strings, bytes and mappings."""

    def __init__(self, constructors: ConstructorRegistry):
        self.constructors = constructors

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if descriptor.raw is not collections.abc.Iterable and not descriptor.is_subclass(
            collections.abc.Collection
        ):
            return None
        if descriptor.is_subclass((str, bytes, bytearray, collections.abc.Mapping)):
            return None

        registry = resolver.registry
        fixed = descriptor.is_subclass(tuple) and bool(descriptor.args) and not descriptor.is_variadic_tuple
        if fixed:
            element_types = list(descriptor.args)
        elif descriptor.is_subclass(tuple) and hasattr(descriptor.raw, "_fields"):
            # Named tuples: fields are positional
            hints = type_hints(descriptor.raw)
            element_types = [TypeDescriptor.of(hints.get(f, object)) for f in descriptor.raw._fields]
            fixed = bool(element_types)
        else:
            element_types = [descriptor.arg(0)]
        elements = [
            RuntimeTypeConverter(registry, resolver.resolve(t), t) for t in element_types
        ] or [RuntimeTypeConverter(registry, resolver.resolve(OBJECT), OBJECT)]
        return SequenceConverter(descriptor, elements, self.constructors.get(descriptor), fixed)

    def __repr__(self) -> str:
        return "SequenceFactory()"


# =============================================================================
# Mappings
# =============================================================================


def _key_name(key: Any, converter: Converter) -> str:
    if isinstance(key, str):
        return key
    tree = converter.to_tree(key)
    if isinstance(tree, str):
        return tree
    if isinstance(tree, bool):
        return "true" if tree else "false"
    if tree is None:
        return "null"
    if isinstance(tree, (int, float)):
        return str(tree)
    return str(key)


class MappingConverter(Converter):
    """
    Converter for mappings.

    Keys are written as property names. With ``complex_keys`` enabled, a
    mapping whose keys are objects or arrays is written as an array of
    ``[key, value]`` pairs instead; both forms are accepted when reading.
    """

    def __init__(
        self,
        key: Converter,
        value: Converter,
        constructor: ObjectConstructor,
        complex_keys: bool = False,
    ):
        self.key = key
        self.value = value
        self.constructor = constructor
        self.complex_keys = complex_keys

    def read(self, reader: TokenReader) -> Any:
        token = reader.peek()
        if token is Token.NULL:
            reader.next_null()
            return None
        mapping = self.constructor.construct()
        if token is Token.BEGIN_ARRAY:
            reader.begin_array()
            while reader.has_next():
                reader.begin_array()
                key = self.key.read(reader)
                self._put(reader, mapping, key, self.value.read(reader))
                reader.end_array()
            reader.end_array()
        else:
            reader.begin_object()
            while reader.has_next():
                name = reader.next_name()
                key = self.key.from_tree(name)
                self._put(reader, mapping, key, self.value.read(reader))
            reader.end_object()
        return mapping

    def _put(self, reader: TokenReader, mapping: Any, key: Any, value: Any) -> None:
        if key in mapping:
            raise JsonSyntaxError(f"Duplicate key: {key!r} at path {reader.path()}")
        value = reader.references.bind(value, lambda ref: KeyPatch(mapping, ref, key=key))
        mapping[key] = None if isinstance(value, LateBinding) else value

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        if self.complex_keys:
            keys = [self.key.to_tree(k) for k in value]
            if any(isinstance(k, (dict, list)) for k in keys):
                writer.begin_array()
                for key_tree, item in zip(keys, value.values()):
                    writer.begin_array()
                    writer.tree_value(key_tree)
                    self.value.write(writer, item)
                    writer.end_array()
                writer.end_array()
                return
        writer.begin_object()
        for key, item in value.items():
            writer.name(_key_name(key, self.key))
            self.value.write(writer, item)
        writer.end_object()


class MappingFactory(ConverterFactory):
    def __init__(self, constructors: ConstructorRegistry, complex_keys: bool = False):
        self.constructors = constructors
        self.complex_keys = complex_keys

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if not descriptor.is_subclass(collections.abc.Mapping):
            return None
        registry = resolver.registry
        key_type, value_type = descriptor.arg(0), descriptor.arg(1)
        return MappingConverter(
            RuntimeTypeConverter(registry, resolver.resolve(key_type), key_type),
            RuntimeTypeConverter(registry, resolver.resolve(value_type), value_type),
            self.constructors.get(descriptor),
            self.complex_keys,
        )

    def __repr__(self) -> str:
        return "MappingFactory()"


# =============================================================================
# Untyped Documents
# =============================================================================


class DocumentConverter(Converter):
    """
    Converter for ``object``/``Any`` when class tagging is off.

    Reading returns the plain JSON value (dicts, lists and scalars).
    Writing uses the converter of the value's runtime class.
    """

    def __init__(self, registry: ConverterRegistry):
        self.registry = registry

    def read(self, reader: TokenReader) -> Any:
        return reader.read_tree()

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        if type(value) is object:
            writer.begin_object()
            writer.end_object()
            return
        self.registry.resolve(type(value)).write(writer, value)


class DocumentFactory(ConverterFactory):
    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if descriptor.is_catch_all:
            return DocumentConverter(resolver.registry)
        return None

    def __repr__(self) -> str:
        return "DocumentFactory()"
