"""
Converter and factory protocols for the flexison library.

A Converter maps one type to and from the token stream. A ConverterFactory
is asked, in chain order, whether it can build a converter for a requested
TypeDescriptor; returning None passes the request on to the next factory.

This module also holds the small converters that wrap other converters:
- ConverterCell: forwards to a converter that is still being built
- RuntimeTypeConverter: writes values with the converter of their runtime
  type when that is more specific than the declared one
- ToStringConverter: writes ``str(value)`` and reads ``cls(text)``
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from flexison.descriptors import TypeDescriptor
from flexison.stream import Token, TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.references import ReadReferences
    from flexison.registry import ConverterRegistry, Resolver


class Converter:
    """
    Reads and writes values of one type.

    Converters are cached and shared, and may be invoked recursively for
    self-referential data, so they must not keep per-call state.

    Attributes:
        reflective: True for converters built from a class's field set.
        reads_arrays: False for converters of scalar or object types, whose
            fields may then unwrap a single-element array.
    """

    reflective = False
    reads_arrays = True

    def read(self, reader: TokenReader) -> Any:
        raise NotImplementedError

    def write(self, writer: TokenWriter, value: Any) -> None:
        raise NotImplementedError

    def to_tree(self, value: Any) -> Any:
        """Write ``value`` into a fresh document tree."""
        writer = TokenWriter()
        self.write(writer, value)
        return writer.get()

    def from_tree(self, tree: Any, references: ReadReferences | None = None) -> Any:
        """
        Read a value from a document tree.

        Args:
            tree: A parsed JSON value.
            references: The reference table of an enclosing parse, if any.
        """
        return self.read(TokenReader(tree, references))


class ConverterFactory:
    """Builds converters for the types it recognises."""

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        """
        Args:
            resolver: Resolves the converters this one depends on.
            descriptor: The requested type.

        Returns:
            A converter, or None if this factory does not handle the type.
        """
        raise NotImplementedError


class ConverterCell(Converter):
    """
    Stand-in for a converter that is still under construction.

    Recursive types ask for their own converter while it is being built;
    they receive this cell, which is filled exactly once when construction
    completes.
    """

    def __init__(self, descriptor: TypeDescriptor):
        self.descriptor = descriptor
        self.delegate: Converter | None = None

    def set_delegate(self, delegate: Converter) -> None:
        if self.delegate is not None:
            raise RuntimeError(f"Converter for {self.descriptor} is already set")
        self.delegate = delegate

    def _target(self) -> Converter:
        if self.delegate is None:
            raise RuntimeError(f"Converter for {self.descriptor} is not ready yet")
        return self.delegate

    @property
    def reflective(self) -> bool:
        return self._target().reflective

    @property
    def reads_arrays(self) -> bool:
        return self._target().reads_arrays

    def read(self, reader: TokenReader) -> Any:
        return self._target().read(reader)

    def write(self, writer: TokenWriter, value: Any) -> None:
        self._target().write(writer, value)


class RuntimeTypeConverter(Converter):
    """
    Writes with the converter of the value's runtime class when the
    declared type is a plain (non-generic) class.

    A converter registered for the declared type wins over the reflective
    converter of a subclass; any other runtime converter wins over the
    declared one.
    """

    def __init__(self, registry: ConverterRegistry, declared: Converter, descriptor: TypeDescriptor):
        self.registry = registry
        self.declared = declared
        self.descriptor = descriptor

    @property
    def reflective(self) -> bool:
        return self.declared.reflective

    @property
    def reads_arrays(self) -> bool:
        return self.declared.reads_arrays

    def read(self, reader: TokenReader) -> Any:
        return self.declared.read(reader)

    def write(self, writer: TokenWriter, value: Any) -> None:
        chosen = self.declared
        if value is not None and not self.descriptor.args and type(value) is not self.descriptor.raw:
            runtime = self.registry.resolve(type(value))
            if not runtime.reflective or self.declared.reflective:
                chosen = runtime
        chosen.write(writer, value)


class ToStringConverter(Converter):
    """
    Writes a value as its ``str()`` and reads it back via ``cls(text)``.

    Example:
        >>> builder.register_hierarchy_converter(Path, ToStringConverter(Path))
    """

    reads_arrays = False

    def __init__(self, cls: type):
        self.cls = cls

    def read(self, reader: TokenReader) -> Any:
        if reader.peek() is Token.NULL:
            reader.next_null()
            return None
        return self.cls(reader.next_string())

    def write(self, writer: TokenWriter, value: Any) -> None:
        writer.value(None if value is None else str(value))


# =============================================================================
# Factory Helpers
# =============================================================================


class _ExactFactory(ConverterFactory):
    def __init__(self, annotation: Any, converter: Converter):
        self.descriptor = TypeDescriptor.of(annotation)
        self.converter = converter

    def create(self, resolver, descriptor):
        if descriptor == self.descriptor or (
            not self.descriptor.args and descriptor.raw is self.descriptor.raw
        ):
            return self.converter
        return None

    def __repr__(self) -> str:
        return f"exact_factory({self.descriptor}, {self.converter!r})"


class _HierarchyFactory(ConverterFactory):
    def __init__(self, base: type, converter: Converter):
        self.base = base
        self.converter = converter

    def create(self, resolver, descriptor):
        if descriptor.is_subclass(self.base):
            return self.converter
        return None

    def __repr__(self) -> str:
        return f"hierarchy_factory({self.base.__qualname__}, {self.converter!r})"


class _CallableFactory(ConverterFactory):
    def __init__(self, build: Callable[[Resolver, TypeDescriptor], Converter | None]):
        self.build = build

    def create(self, resolver, descriptor):
        return self.build(resolver, descriptor)


def exact_factory(annotation: Any, converter: Converter) -> ConverterFactory:
    """Factory that claims exactly one type (any parameterisation of a raw class)."""
    return _ExactFactory(annotation, converter)


def hierarchy_factory(base: type, converter: Converter) -> ConverterFactory:
    """Factory that claims ``base`` and all of its subclasses."""
    return _HierarchyFactory(base, converter)


def factory(build: Callable[[Resolver, TypeDescriptor], Converter | None]) -> ConverterFactory:
    """Turn a plain function into a ConverterFactory."""
    return _CallableFactory(build)
