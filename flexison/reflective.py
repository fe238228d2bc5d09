"""
The reflective converter: the last factory in the chain.

Any class nobody else claimed is mapped through its declared fields. The
written document is a JSON object with, in order:

1. the class tag (``"@class": "module.QualName"``) when a class property is
   configured and the class is importable by name
2. ``"@id"`` under the JSOG loop policy
3. one member per serialized field

On the way back the first member is looked at before anything is
constructed. If it is the class tag and names a more specific class, the
read is handed to that class's converter, which is how abstract-typed and
``object``-typed slots get their runtime subtype back.

For ``object``/``Any`` slots (when tagging is on) the document is read as
plain dicts, lists and scalars. A dict that carries the class tag further
down than its first member is converted afterwards, coercing each value
into the declared field type.
"""

from __future__ import annotations

import logging
import typing
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from flexison.classes import qualified_name
from flexison.coercion import Coercer
from flexison.constructors import ConstructorRegistry, ObjectConstructor
from flexison.converters import Converter, ConverterFactory, RuntimeTypeConverter
from flexison.descriptors import OBJECT, TypeDescriptor
from flexison.errors import ConfigurationError, TypeMismatchError
from flexison.excluder import Excluder
from flexison.fields import BoundField, FieldNamingPolicy, NamingStrategy, declared_fields, is_frozen
from flexison.references import (
    ID_PROPERTY,
    MISSING,
    REF_PROPERTY,
    FieldPatch,
    IndexPatch,
    KeyPatch,
    LateBinding,
    LoopPolicy,
    ReadReferences,
)
from flexison.stream import Token, TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.registry import ConverterRegistry, Resolver

logger = logging.getLogger(__name__)

# Returned by the tag lookahead when the tag names a class that cannot be found
_UNTYPED = object()


def _is_subclass(cls: type, base: type) -> bool:
    try:
        return issubclass(cls, base)
    except TypeError:
        return False


def _type_bindings(descriptor: TypeDescriptor) -> dict[TypeVar, TypeDescriptor]:
    """
    Collect the type variable bindings visible to the fields of a class.

    Parameters of the requested generic (``Box[int]``) come first; the
    arguments that subclasses pass to generic bases (``class IntBox(Box[int])``)
    fill in the rest.
    """
    bindings = descriptor.type_bindings()
    for klass in descriptor.raw.__mro__:
        for base in klass.__dict__.get("__orig_bases__", ()):
            origin = typing.get_origin(base)
            params = getattr(origin, "__parameters__", ())
            for param, arg in zip(params, typing.get_args(base)):
                if isinstance(param, TypeVar) and param not in bindings:
                    bindings[param] = TypeDescriptor.of(arg, bindings)
    return bindings


class ReflectiveConverterFactory(ConverterFactory):
    """
    Builds a ReflectiveConverter for any class.

    Args:
        constructors: Supplies the empty instances to fill.
        excluder: Decides which declared fields take part.
        coercer: Reconciles untyped values with field types.
        class_for_name: Resolves class tags; returns None for names that
            cannot be resolved and should be read untyped.
        class_property: Name of the class tag member, or None to disable
            tagging.
        loop_policy: The loop policy; JSOG enables ``@id``/``@ref``.
        naming: Translates attribute names into document names.
    """

    def __init__(
        self,
        constructors: ConstructorRegistry,
        excluder: Excluder,
        coercer: Coercer,
        class_for_name: Callable[[str], type | None],
        class_property: str | None = None,
        loop_policy: LoopPolicy = LoopPolicy.NO_CHECKS,
        naming: FieldNamingPolicy | NamingStrategy = FieldNamingPolicy.IDENTITY,
    ):
        self.constructors = constructors
        self.excluder = excluder
        self.coercer = coercer
        self.class_for_name = class_for_name
        self.class_property = class_property
        self.jsog = loop_policy is LoopPolicy.JSOG
        if isinstance(naming, FieldNamingPolicy):
            naming = naming.translate
        self.naming = naming

    @property
    def registry(self) -> ConverterRegistry:
        return self.coercer.registry

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if not isinstance(descriptor.raw, type):
            return None
        document = resolver.resolve(OBJECT)
        if descriptor.is_catch_all:
            fields, is_open = [], False
        else:
            fields, is_open = self._bind_fields(resolver, descriptor, document)
        return ReflectiveConverter(
            self, descriptor, self.constructors.get(descriptor), fields, document, is_open
        )

    def _field_name(self, attributes) -> str:
        if attributes.options is not None and attributes.options.name:
            return attributes.options.name
        if attributes.alias:
            return attributes.alias
        return self.naming(attributes.name)

    def _bind_fields(
        self,
        resolver: Resolver,
        descriptor: TypeDescriptor,
        document: Converter,
    ) -> tuple[list[BoundField], bool]:
        raw = descriptor.raw
        declared = [a for a in declared_fields(raw) if not a.is_class_var]
        bindings = _type_bindings(descriptor)
        frozen = is_frozen(raw)

        fields: list[BoundField] = []
        names: set[str] = set()
        for attributes in declared:
            serialized = not self.excluder.excludes_field(attributes, serialize=True)
            deserialized = not self.excluder.excludes_field(attributes, serialize=False)
            if not serialized and not deserialized:
                continue

            field_type = TypeDescriptor.of(attributes.annotation, bindings)
            converter = RuntimeTypeConverter(resolver.registry, resolver.resolve(field_type), field_type)
            name = self._field_name(attributes)
            alternates = attributes.options.alternate if attributes.options is not None else ()
            for candidate in (name, *alternates):
                if candidate in names:
                    raise ConfigurationError(
                        f"{raw.__qualname__} declares multiple JSON fields named {candidate!r}"
                    )
                names.add(candidate)

            fields.append(BoundField.for_attributes(
                attributes,
                name,
                field_type,
                converter,
                serialized=serialized,
                deserialized=deserialized,
                frozen=frozen,
                document=document,
                coercer=self.coercer,
            ))
        return fields, not declared

    def __repr__(self) -> str:
        return "ReflectiveConverterFactory()"


class ReflectiveConverter(Converter):
    """
    Reads and writes one class through its bound fields.

    Attributes:
        descriptor: The converted type.
        constructor: Builds the instances to fill.
        fields: Every bound field, in declaration order.
        open: True for classes without declared fields, whose instance
            ``__dict__`` is written and read as untyped values.
    """

    reflective = True

    def __init__(
        self,
        factory: ReflectiveConverterFactory,
        descriptor: TypeDescriptor,
        constructor: ObjectConstructor,
        fields: list[BoundField],
        document: Converter,
        is_open: bool = False,
    ):
        self.factory = factory
        self.descriptor = descriptor
        self.constructor = constructor
        self.fields = fields
        self.document = document
        self.open = is_open
        self.catch_all = descriptor.is_catch_all
        self.reads_arrays = self.catch_all

        self.writable = [f for f in fields if f.serialized]
        self.readable: dict[str, BoundField] = {}
        for field in fields:
            if field.deserialized:
                for name in (field.name, *field.alternates):
                    self.readable[name] = field

    # =========================================================================
    # Reading
    # =========================================================================

    def read(self, reader: TokenReader) -> Any:
        token = reader.peek()
        if token is Token.NULL:
            reader.next_null()
            return None

        if token is Token.BEGIN_OBJECT and self.factory.class_property is not None:
            redirect = self._redirect(reader)
            if redirect is _UNTYPED:
                return self._read_document(reader, change_class=False)
            if redirect is not None:
                return redirect.read(reader)

        raw = self.descriptor.raw
        if self.catch_all or getattr(raw, "_is_protocol", False):
            return self._read_document(reader)
        if token is Token.STRING:
            return self.constructor.construct_from_string(reader.next_string())
        if token is Token.BEGIN_OBJECT and self.factory.jsog and self._starts_with(reader, REF_PROPERTY):
            return self._read_reference(reader)

        try:
            instance = self.constructor.construct()
        except TypeError:
            if token is Token.BEGIN_OBJECT:
                logger.debug("Reading %s untyped: it cannot be instantiated", self.descriptor)
                return self._read_document(reader)
            raise

        references = reader.references
        reader.begin_object()
        while reader.has_next():
            name = reader.next_name()
            if self.factory.jsog and name == ID_PROPERTY:
                references.register(str(reader.read_tree()), instance)
                continue
            if name == self.factory.class_property:
                reader.skip_value()
                continue
            field = self.readable.get(name)
            if field is None:
                if not self.open:
                    logger.debug("Skipping unknown property %r of %s", name, self.descriptor)
                    reader.skip_value()
                    continue
                field = self._dynamic_field(name)
            field.read(reader, instance)
        reader.end_object()
        return instance

    def _starts_with(self, reader: TokenReader, name: str) -> bool:
        probe = reader.short_term_copy()
        probe.begin_object()
        return probe.has_next() and probe.next_name() == name

    def _redirect(self, reader: TokenReader) -> Any:
        """
        Look at the class tag, if it is the first member.

        Returns:
            The converter to hand the read to, None to read as this type,
            or _UNTYPED if the tag names a class that cannot be resolved.
        """
        probe = reader.short_term_copy()
        probe.begin_object()
        if not probe.has_next() or probe.next_name() != self.factory.class_property:
            return None
        if probe.peek() is not Token.STRING:
            return None
        name = probe.next_string()

        raw = self.descriptor.raw
        if name == qualified_name(raw):
            return None
        cls = self.factory.class_for_name(name)
        if cls is None:
            return _UNTYPED
        if cls is raw:
            return None
        if not self.catch_all and not _is_subclass(cls, raw):
            raise TypeMismatchError(
                f"Class {name} is not a subclass of {self.descriptor} at path {reader.path()}"
            )
        return self.factory.registry.resolve(cls)

    def _read_reference(self, reader: TokenReader) -> Any:
        ref = None
        reader.begin_object()
        while reader.has_next():
            if reader.next_name() == REF_PROPERTY:
                ref = str(reader.read_tree())
            else:
                reader.skip_value()
        reader.end_object()
        found = reader.references.lookup(ref)
        return LateBinding(ref) if found is MISSING else found

    def _dynamic_field(self, name: str) -> BoundField:
        return BoundField(name, name, OBJECT, self.document, document=self.document)

    # =========================================================================
    # Untyped Documents
    # =========================================================================

    def _read_document(self, reader: TokenReader, change_class: bool = True) -> Any:
        """Read the next value as dicts, lists and scalars."""
        references = reader.references
        token = reader.peek()

        if token is Token.BEGIN_ARRAY:
            items: list = []
            reader.begin_array()
            while reader.has_next():
                value = references.bind(
                    self.document.read(reader),
                    lambda ref, index=len(items): IndexPatch(items, ref, index=index),
                )
                items.append(None if isinstance(value, LateBinding) else value)
            reader.end_array()
            return items

        if token is not Token.BEGIN_OBJECT:
            return reader.read_tree()

        document: dict[str, Any] = {}
        reader.begin_object()
        while reader.has_next():
            name = reader.next_name()
            document[name] = self.document.read(reader)
        reader.end_object()
        return self._finish_document(document, references, change_class)

    def _finish_document(self, document: dict, references: ReadReferences, change_class: bool) -> Any:
        ident = None
        if self.factory.jsog:
            if REF_PROPERTY in document:
                ref = str(document[REF_PROPERTY])
                found = references.lookup(ref)
                return LateBinding(ref) if found is MISSING else found
            ident = document.pop(ID_PROPERTY, None)

        tag = self.factory.class_property
        result = None
        if change_class and tag is not None and isinstance(document.get(tag), str):
            result = self._change_class(document, references)
        if result is None:
            result = document
            for key, value in list(document.items()):
                value = references.bind(value, lambda ref, key=key: KeyPatch(document, ref, key=key))
                if isinstance(value, LateBinding):
                    document[key] = None

        if ident is not None:
            references.register(str(ident), result)
        return result

    def _change_class(self, document: dict, references: ReadReferences) -> Any:
        """
        Convert a tagged dict into an instance of the tagged class.

        Returns:
            The instance, or None if the tag cannot be resolved.
        """
        cls = self.factory.class_for_name(document[self.factory.class_property])
        if cls is None:
            return None
        converter = self.factory.registry.resolve(cls)
        values = {k: v for k, v in document.items() if k != self.factory.class_property}
        if isinstance(converter, ReflectiveConverter):
            return converter.populate(values, references)
        return converter.from_tree(values, references)

    def populate(self, values: dict[str, Any], references: ReadReferences) -> Any:
        """Build an instance from already read values, coercing each one."""
        instance = self.constructor.construct()
        for name, value in values.items():
            field = self.readable.get(name)
            if field is None:
                if not self.open:
                    logger.debug("Skipping unknown property %r of %s", name, self.descriptor)
                    continue
                field = self._dynamic_field(name)
            value = references.bind(
                value, lambda ref, field=field: FieldPatch(instance, ref, field=field)
            )
            if isinstance(value, LateBinding):
                field.set(instance, None)
                continue
            if value is None and not field.nullable:
                continue
            field.set(instance, self.factory.coercer.coerce(value, field.descriptor, references, name))
        return instance

    # =========================================================================
    # Writing
    # =========================================================================

    def write(self, writer: TokenWriter, value: Any) -> None:
        if value is None:
            writer.null_value()
            return
        if self.catch_all and type(value) is not object:
            self.factory.registry.resolve(type(value)).write(writer, value)
            return

        references = writer.references
        if not references.enter(value):
            writer.null_value()
            return
        try:
            writer.begin_object()
            if self.factory.jsog:
                ref = references.reference_for(value)
                if ref is not None:
                    writer.name(REF_PROPERTY)
                    writer.value(ref)
                    writer.end_object()
                    return

            if self.factory.class_property is not None and not self.catch_all:
                tag = qualified_name(type(value))
                if tag is not None:
                    writer.name(self.factory.class_property)
                    writer.value(tag)
            if self.factory.jsog:
                writer.name(ID_PROPERTY)
                writer.value(references.new_id(value))

            for field in self.writable:
                field.write(writer, value)
            if self.open:
                exclude_private = self.factory.excluder.exclude_private
                for name, item in getattr(value, "__dict__", {}).items():
                    if exclude_private and name.startswith("_"):
                        continue
                    writer.name(name)
                    self.document.write(writer, item)
            writer.end_object()
        finally:
            references.leave(value)

    def __repr__(self) -> str:
        return f"ReflectiveConverter({self.descriptor})"
