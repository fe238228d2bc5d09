"""
The Flexison facade: conversions between objects and JSON.

A Flexison owns one converter registry, built from its FlexisonConfig. The
factory chain is consulted in this order:

1. the untyped document converter for ``object``/``Any`` (only when class
   tagging is off; otherwise the reflective converter reads tags there)
2. the Excluder
3. user factories: late registrations first, then configured factories in
   registration order
4. scalars, enums, classes, mappings and sequences
5. the reflective converter

Every top-level call gets fresh reference bookkeeping. After a document has
been read, forward references are patched in the order they were found.
"""

from __future__ import annotations

import logging
import re
from typing import IO, Any, Mapping

from flexison.adapters import (
    ClassFactory,
    DocumentFactory,
    EnumFactory,
    MappingFactory,
    ScalarFactory,
    SequenceFactory,
)
from flexison.classes import load_class
from flexison.coercion import Coercer
from flexison.config import ClassErrorPolicy, FlexisonConfig
from flexison.constructors import ConstructorRegistry
from flexison.converters import Converter, ConverterFactory, RuntimeTypeConverter, exact_factory
from flexison.descriptors import TypeDescriptor
from flexison.errors import JsonIOError, JsonSyntaxError
from flexison.excluder import Excluder
from flexison.reflective import ReflectiveConverterFactory
from flexison.references import ReadReferences, WriteReferences
from flexison.registry import ConverterRegistry
from flexison.stream import EMPTY, NON_EXECUTABLE_PREFIX, Token, TokenReader, TokenWriter, emit, parse

logger = logging.getLogger(__name__)


class Flexison:
    """
    Converts objects to JSON and back.

    Instances are immutable once built and safe to share between threads.

    Args:
        config: The options; defaults to no class tags and no loop checks.

    Example:
        >>> flexison = Flexison()
        >>> text = flexison.to_json(Point(1, 2))
        >>> flexison.from_json(text, Point)
        Point(x=1, y=2)
    """

    def __init__(self, config: FlexisonConfig | None = None):
        self.config = config if config is not None else FlexisonConfig()
        config = self.config

        self.constructors = ConstructorRegistry(config.instance_creators)
        self.excluder = Excluder(
            config.version,
            config.exclude_private,
            config.exclusion_strategies,
            config.excluded_types,
        )
        self.registry = ConverterRegistry([], flexison=self)
        self.coercer = Coercer(self.registry, self.constructors)

        factories: list[ConverterFactory] = []
        if config.class_property is None:
            factories.append(DocumentFactory())
        factories.append(self.excluder)
        factories.extend(config.factories)
        factories.extend([
            ScalarFactory(config.long_serialization),
            EnumFactory(),
            ClassFactory(self.class_for_name),
            MappingFactory(self.constructors, config.complex_map_keys),
            SequenceFactory(self.constructors),
            ReflectiveConverterFactory(
                self.constructors,
                self.excluder,
                self.coercer,
                self.class_for_name,
                class_property=config.class_property,
                loop_policy=config.loop_policy,
                naming=config.field_naming,
            ),
        ])
        self.registry.factories.extend(factories)

    # =========================================================================
    # Converters
    # =========================================================================

    def converter(self, annotation: Any) -> Converter:
        """
        Return the converter for a type.

        Raises:
            ConfigurationError: If no factory handles the type.
        """
        return self.registry.resolve(annotation)

    def delegate_converter(self, skip_past: ConverterFactory, annotation: Any) -> Converter:
        """
        Return the converter the chain yields after ``skip_past``.

        For factories that wrap the converter they would otherwise replace.
        """
        return self.registry.resolve_skipping(skip_past, annotation)

    def register_converter(self, annotation: Any, converter: Converter) -> Flexison:
        """
        Register a converter on an existing instance.

        The converter takes precedence over every other factory, and
        previously built converters are discarded.
        """
        self.registry.insert(exact_factory(annotation, converter))
        return self

    def class_for_name(self, name: str) -> type | None:
        """
        Resolve a class tag.

        Returns:
            The class, or None if it cannot be loaded and the class error
            policy is REPORT or IGNORE.

        Raises:
            JsonSyntaxError: If the class cannot be loaded under the
                THROW_EXCEPTION policy.
        """
        mapped = self.config.class_mapping.get(name)
        if mapped is not None:
            return mapped
        try:
            return load_class(name)
        except ImportError as exc:
            policy = self.config.class_error_policy
            if policy is ClassErrorPolicy.THROW_EXCEPTION:
                raise JsonSyntaxError(f"Unknown class {name!r}") from exc
            if policy is ClassErrorPolicy.REPORT:
                logger.warning("Unknown class %r; reading it as a plain dict", name)
            return None

    # =========================================================================
    # Writing
    # =========================================================================

    def _writer(self) -> TokenWriter:
        return TokenWriter(
            serialize_nulls=self.config.serialize_nulls,
            lenient=self.config.serialize_special_floats,
            references=WriteReferences(self.config.loop_policy),
        )

    def write(self, value: Any, writer: TokenWriter, annotation: Any = None) -> None:
        """
        Write ``value`` to an existing writer.

        The writer's null and special float flags are set for the duration
        of the call and restored afterwards.
        """
        descriptor = TypeDescriptor.of(type(value) if annotation is None else annotation)
        converter = RuntimeTypeConverter(self.registry, self.registry.resolve(descriptor), descriptor)

        saved = writer.serialize_nulls, writer.lenient
        writer.serialize_nulls = self.config.serialize_nulls
        writer.lenient = self.config.serialize_special_floats
        try:
            converter.write(writer, value)
        finally:
            writer.serialize_nulls, writer.lenient = saved

    def to_tree(self, value: Any, annotation: Any = None) -> Any:
        """Convert ``value`` to a document tree of dicts, lists and scalars."""
        writer = self._writer()
        self.write(value, writer, annotation)
        return writer.get()

    def to_json(self, value: Any, annotation: Any = None, out: IO[str] | None = None) -> str | None:
        """
        Convert ``value`` to JSON text.

        Args:
            value: The object to convert.
            annotation: The declared type; defaults to the value's class.
            out: A text stream to write to instead of returning the text.

        Returns:
            The JSON text, or None when ``out`` was given.

        Raises:
            JsonIOError: If writing to ``out`` fails.
        """
        text = emit(
            self.to_tree(value, annotation),
            pretty=self.config.pretty_printing,
            html_safe=self.config.html_safe,
            non_executable=self.config.generate_non_executable_json,
        )
        if out is None:
            return text
        try:
            out.write(text)
        except OSError as exc:
            raise JsonIOError(str(exc)) from exc
        return None

    def to_json_object(self, value: Any) -> Any:
        """Return a plain JSON copy (dicts, lists and scalars) of ``value``."""
        return self.to_tree(value)

    # =========================================================================
    # Reading
    # =========================================================================

    def from_json(self, source: str | IO[str], annotation: Any = object) -> Any:
        """
        Read an object from JSON text.

        Args:
            source: JSON text or a readable text stream.
            annotation: The type to read; ``object`` reads by class tag, or
                as plain dicts and lists when tagging is off.

        Returns:
            The object, or None for blank input.

        Raises:
            JsonSyntaxError: If the text is not valid JSON for the type.
            JsonIOError: If reading the stream fails.
        """
        if not isinstance(source, str):
            try:
                source = source.read()
            except OSError as exc:
                raise JsonIOError(str(exc)) from exc
        for preprocess in self.config.preprocessors:
            source = preprocess(source)
        if source.startswith(NON_EXECUTABLE_PREFIX):
            source = source[len(NON_EXECUTABLE_PREFIX):]

        tree = parse(source, lenient=self.config.lenient)
        if tree is EMPTY:
            return None
        return self.from_tree(tree, annotation)

    def from_tree(self, tree: Any, annotation: Any = object) -> Any:
        """
        Read an object from a document tree.

        Raises:
            UnresolvedReferenceError: If an ``@ref`` names an undefined id.
        """
        references = ReadReferences()
        reader = TokenReader(tree, references)
        reader.lenient = self.config.lenient

        value = self.registry.resolve(annotation).read(reader)
        if reader.peek() is not Token.END_DOCUMENT:
            raise JsonIOError("JSON document was not fully consumed.")

        value = references.resolve(value)
        references.apply_pending()
        return value

    def convert(self, document: Mapping[str, Any], annotation: Any) -> Any:
        """Convert a plain JSON dict (e.g. from ``json.loads``) into ``annotation``."""
        return self.from_tree(self.to_tree(document), annotation)

    def remove_class_property(self, text: str) -> str:
        """Strip class tags from JSON text written by this instance."""
        tag = self.config.class_property
        if tag is None:
            return text
        return re.sub(r"[\"']" + re.escape(tag) + r"[\"']:\s*[\"'][^\"']*[\"'],?", "", text)

    def __repr__(self) -> str:
        return f"Flexison(class_property={self.config.class_property!r}, loop_policy={self.config.loop_policy.name})"
