"""
Field discovery and binding for the reflective converter.

The writable/readable properties of a class are its declared fields:
- pydantic models: ``model_fields``
- dataclasses: ``dataclasses.fields()``
- other classes: annotations across the MRO, plus ``__slots__``

ClassVar annotations are never fields. Per-field options are attached with
``Annotated``:

    >>> @dataclass
    ... class Account:
    ...     owner: Annotated[str, JsonField(name="user", alternate=("login",))]
    ...     pin: Annotated[int, JsonField(serialize=False)] = 0
    ...     plan: Annotated[str, JsonField(since=2.0)] = "free"

A class with no declared fields at all is "open": its instance ``__dict__``
is written as is, and every property read is stored as an untyped value.
"""

from __future__ import annotations

import dataclasses
import enum
import re
import typing
from typing import TYPE_CHECKING, Annotated, Any, Callable, ClassVar

from pydantic import BaseModel

from flexison.descriptors import TypeDescriptor, admits_none
from flexison.references import FieldPatch, LateBinding
from flexison.stream import Token, TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.coercion import Coercer
    from flexison.converters import Converter

# Fields that keep their value when the document holds null
_PRIMITIVES = (int, float, bool)


@dataclasses.dataclass(frozen=True)
class JsonField:
    """
    Options for one field, attached with ``Annotated[T, JsonField(...)]``.

    Attributes:
        name: Document name, overriding the naming policy.
        alternate: Additional names accepted when reading.
        since: First version that has the field.
        until: First version that no longer has the field.
        serialize: Whether the field is written.
        deserialize: Whether the field is read.
    """

    name: str | None = None
    alternate: tuple[str, ...] = ()
    since: float | None = None
    until: float | None = None
    serialize: bool = True
    deserialize: bool = True


def versioned(since: float | None = None, until: float | None = None):
    """
    Class decorator gating a whole class by version.

    Example:
        >>> @versioned(since=1.1)
        ... class Coupon: ...
    """

    def decorate(cls: type) -> type:
        cls.__flexison_version__ = (since, until)
        return cls

    return decorate


class FieldNamingPolicy(enum.Enum):
    """Translations from attribute names to document names."""

    IDENTITY = "identity"
    UPPER_CAMEL_CASE = "upper_camel_case"
    LOWER_CAMEL_CASE = "lower_camel_case"
    LOWER_CASE_WITH_UNDERSCORES = "lower_case_with_underscores"
    LOWER_CASE_WITH_DASHES = "lower_case_with_dashes"

    def translate(self, name: str) -> str:
        if self is FieldNamingPolicy.IDENTITY:
            return name
        prefix = name[: len(name) - len(name.lstrip("_"))]
        words = _words(name[len(prefix):])
        if not words:
            return name
        if self is FieldNamingPolicy.UPPER_CAMEL_CASE:
            return prefix + "".join(w.capitalize() for w in words)
        if self is FieldNamingPolicy.LOWER_CAMEL_CASE:
            return prefix + words[0].lower() + "".join(w.capitalize() for w in words[1:])
        if self is FieldNamingPolicy.LOWER_CASE_WITH_UNDERSCORES:
            return prefix + "_".join(w.lower() for w in words)
        return prefix + "-".join(w.lower() for w in words)


def _words(name: str) -> list[str]:
    """Split snake_case and camelCase names into words."""
    return [w for w in re.split(r"_+|(?<=[a-z0-9])(?=[A-Z])", name) if w]


# =============================================================================
# Declared Fields
# =============================================================================


@dataclasses.dataclass(frozen=True)
class FieldAttributes:
    """
    A declared field, as seen by exclusion strategies.

    Attributes:
        name: Attribute name on the instance.
        annotation: Declared type annotation (with Annotated metadata).
        declaring_class: The class whose field set contains it.
        options: The field's JsonField, if any.
        alias: A pydantic alias, if any.
    """

    name: str
    annotation: Any
    declaring_class: type
    options: JsonField | None = None
    alias: str | None = None

    @property
    def is_class_var(self) -> bool:
        return typing.get_origin(self.annotation) is ClassVar


def _options(annotation: Any, metadata: typing.Iterable[Any] = ()) -> JsonField | None:
    if typing.get_origin(annotation) is Annotated:
        metadata = (*metadata, *annotation.__metadata__)
    return next((m for m in metadata if isinstance(m, JsonField)), None)


def type_hints(cls: type) -> dict[str, Any]:
    """Resolve the annotations of ``cls``; unresolvable ones read as ``object``."""
    try:
        return typing.get_type_hints(cls, include_extras=True)
    except (NameError, TypeError, AttributeError):
        # Unresolvable forward references: fields are still found, untyped
        hints: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            for name in getattr(klass, "__annotations__", {}):
                hints[name] = object
        return hints


def declared_fields(cls: type) -> list[FieldAttributes]:
    """Return the declared fields of ``cls``, base classes first."""
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return [
            FieldAttributes(
                name,
                info.annotation,
                cls,
                _options(info.annotation, info.metadata),
                info.alias,
            )
            for name, info in cls.model_fields.items()
        ]

    hints = type_hints(cls)
    if dataclasses.is_dataclass(cls):
        names = [f.name for f in dataclasses.fields(cls)]
    else:
        names = [name for name in hints]
        for klass in reversed(cls.__mro__):
            slots = getattr(klass, "__slots__", ())
            for name in (slots,) if isinstance(slots, str) else slots:
                if name not in names and name not in ("__dict__", "__weakref__"):
                    names.append(name)
    return [
        FieldAttributes(name, hints.get(name, object), cls, _options(hints.get(name)))
        for name in names
    ]


def is_frozen(cls: type) -> bool:
    """True if instances reject ordinary attribute assignment."""
    if dataclasses.is_dataclass(cls):
        return cls.__dataclass_params__.frozen
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return bool(cls.model_config.get("frozen"))
    return False


# =============================================================================
# Bound Fields
# =============================================================================


class BoundField:
    """
    One mapped property of a class.

    Attributes:
        name: Document name.
        attribute: Attribute name on the instance.
        descriptor: Declared type.
        converter: Converter for the declared type.
        alternates: Additional document names accepted when reading.
        serialized: Whether the field is written.
        deserialized: Whether the field is read.
    """

    def __init__(
        self,
        name: str,
        attribute: str,
        descriptor: TypeDescriptor,
        converter: Converter,
        *,
        serialized: bool = True,
        deserialized: bool = True,
        nullable: bool = True,
        frozen: bool = False,
        document: Converter | None = None,
        coercer: Coercer | None = None,
        alternates: tuple[str, ...] = (),
    ):
        self.name = name
        self.alternates = alternates
        self.attribute = attribute
        self.descriptor = descriptor
        self.converter = converter
        self.serialized = serialized
        self.deserialized = deserialized
        self.nullable = nullable
        self.frozen = frozen
        self.document = document
        self.coercer = coercer

    @classmethod
    def for_attributes(
        cls,
        attributes: FieldAttributes,
        name: str,
        descriptor: TypeDescriptor,
        converter: Converter,
        **kwargs: Any,
    ) -> BoundField:
        nullable = admits_none(attributes.annotation) or descriptor.raw not in _PRIMITIVES
        if attributes.options is not None:
            kwargs.setdefault("alternates", attributes.options.alternate)
        return cls(name, attributes.name, descriptor, converter, nullable=nullable, **kwargs)

    def get(self, instance: Any) -> Any:
        return getattr(instance, self.attribute, None)

    def set(self, instance: Any, value: Any) -> None:
        if self.frozen:
            object.__setattr__(instance, self.attribute, value)
        else:
            setattr(instance, self.attribute, value)

    def write(self, writer: TokenWriter, instance: Any) -> None:
        writer.name(self.name)
        self.converter.write(writer, self.get(instance))

    def read(self, reader: TokenReader, instance: Any) -> None:
        """Read this field's value and assign it to ``instance``."""
        if (
            self.coercer is not None
            and reader.peek() is Token.BEGIN_ARRAY
            and not self.converter.reads_arrays
        ):
            value = self.coercer.coerce(
                self.document.read(reader), self.descriptor, reader.references, self.name
            )
        else:
            value = self.converter.read(reader)

        if value is None and not self.nullable:
            # Non-optional primitives keep their current (or zero) value
            if not hasattr(instance, self.attribute):
                self.set(instance, self.descriptor.raw())
            return

        value = reader.references.bind(value, lambda ref: FieldPatch(instance, ref, field=self))
        self.set(instance, None if isinstance(value, LateBinding) else value)

    def __repr__(self) -> str:
        return f"BoundField({self.name!r} -> {self.attribute}: {self.descriptor})"


NamingStrategy = Callable[[str], str]
