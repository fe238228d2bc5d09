"""
flexison - object graph to JSON conversion.

This library converts arbitrary Python object graphs to JSON and back
without hand-written code per type:

- Scalars, enums, datetimes, UUIDs, Decimals and bytes
- Collections (list, tuple, set, dict, named tuples, ABCs)
- Dataclasses, pydantic models and plain annotated classes, through their
  declared fields
- Polymorphic fields, via an optional ``"@class"`` tag holding the class's
  importable name
- Shared and cyclic references, via ``"@id"``/``"@ref"`` (JSOG)

Basic Usage:
    >>> from flexison import Flexison
    >>>
    >>> flexison = Flexison()
    >>> text = flexison.to_json(Order(id=7, lines=[Line("tea", 2)]))
    >>> order = flexison.from_json(text, Order)

Polymorphism and cycles:
    >>> from flexison import FlexisonBuilder, LoopPolicy
    >>>
    >>> flexison = FlexisonBuilder().set_loop_policy(LoopPolicy.JSOG).create()
    >>> node = Node("a"); node.next = node
    >>> flexison.to_json(node)
    '{"@class":"shop.Node","@id":"1","name":"a","next":{"@ref":"1"}}'
    >>> copy = flexison.from_json(_)
    >>> copy.next is copy
    True

Class tags name modules that reading will import. For documents from
untrusted sources use ``FlexisonBuilder.safe()`` (no tags) or a
``class_mapping``.

Classes defined in ``__main__`` or inside functions, and classes from
modules registered with cloudpickle's ``register_pickle_by_value``, are
written without a tag:
    >>> from flexison import register_by_value
    >>> import scratch
    >>> register_by_value(scratch)

To add converters for new types:
    >>> from flexison import Converter, FlexisonBuilder
    >>>
    >>> class PathConverter(Converter):
    ...     def read(self, reader): return Path(reader.next_string())
    ...     def write(self, writer, value): writer.value(str(value))
    >>>
    >>> flexison = FlexisonBuilder().register_hierarchy_converter(Path, PathConverter()).create()
"""

from typing import IO, Any

from cloudpickle import register_pickle_by_value as register_by_value

from flexison.adapters import LongSerializationPolicy
from flexison.config import ClassErrorPolicy, FlexisonBuilder, FlexisonConfig
from flexison.converters import (
    Converter,
    ConverterFactory,
    ToStringConverter,
    exact_factory,
    factory,
    hierarchy_factory,
)
from flexison.descriptors import TypeDescriptor
from flexison.errors import (
    CircularReferenceError,
    ConfigurationError,
    FlexisonError,
    JsonIOError,
    JsonSyntaxError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from flexison.excluder import ExclusionStrategy
from flexison.fields import FieldAttributes, FieldNamingPolicy, JsonField, versioned
from flexison.references import LoopPolicy
from flexison.regex_first import RegexFirstFactory
from flexison.serialize import Flexison
from flexison.stream import Token, TokenReader, TokenWriter

# Used by the module-level helpers; reads and writes no class tags
_default = FlexisonBuilder.safe().create()


def to_json(value: Any, annotation: Any = None) -> str:
    """
    Convert a value to JSON text with the default settings.

    Example:
        >>> to_json({"ids": [1, 2]})
        '{"ids":[1,2]}'
    """
    return _default.to_json(value, annotation)


def from_json(source: str | IO[str], annotation: Any = object) -> Any:
    """
    Read a value from JSON text with the default settings.

    Without an annotation the result is plain dicts, lists and scalars.

    Example:
        >>> from_json('{"x": 1, "y": 2}', Point)
        Point(x=1, y=2)
    """
    return _default.from_json(source, annotation)


__all__ = [
    # Core API
    "Flexison",
    "to_json",
    "from_json",
    # Configuration
    "FlexisonBuilder",
    "FlexisonConfig",
    "ClassErrorPolicy",
    "LoopPolicy",
    "LongSerializationPolicy",
    "FieldNamingPolicy",
    "register_by_value",
    # Fields
    "JsonField",
    "versioned",
    "ExclusionStrategy",
    "FieldAttributes",
    # Extension
    "Converter",
    "ConverterFactory",
    "ToStringConverter",
    "RegexFirstFactory",
    "exact_factory",
    "hierarchy_factory",
    "factory",
    "TypeDescriptor",
    "Token",
    "TokenReader",
    "TokenWriter",
    # Errors
    "FlexisonError",
    "ConfigurationError",
    "JsonSyntaxError",
    "JsonIOError",
    "TypeMismatchError",
    "UnresolvedReferenceError",
    "CircularReferenceError",
]
