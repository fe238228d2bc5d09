"""
Exclusion rules for classes and fields.

The Excluder is the first factory after the framework types, so it can veto
a whole class before any other converter claims it; an excluded class is
written as null and skipped when read. The reflective converter also asks it
which declared fields to leave out.

A field is excluded when it is a ClassVar, when its name is private
(leading underscore) and private fields are excluded, when its JsonField
options turn the direction off, when its version range does not contain the
configured version, or when an ExclusionStrategy says so.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from flexison.converters import Converter, ConverterFactory
from flexison.descriptors import TypeDescriptor
from flexison.fields import FieldAttributes
from flexison.stream import TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.registry import Resolver


class ExclusionStrategy:
    """
    User hook for excluding fields and classes.

    Subclass and override either method; the defaults exclude nothing.
    """

    def should_skip_field(self, field: FieldAttributes) -> bool:
        return False

    def should_skip_class(self, cls: type) -> bool:
        return False


class _ExcludedConverter(Converter):
    def read(self, reader: TokenReader) -> Any:
        reader.skip_value()
        return None

    def write(self, writer: TokenWriter, value: Any) -> None:
        writer.null_value()


class Excluder(ConverterFactory):
    """
    Args:
        version: The version being read or written, or None to ignore
            version gates.
        exclude_private: Leave out fields whose names start with ``_``.
        strategies: Additional exclusion strategies.
        excluded_types: Classes (and their subclasses) to exclude entirely.
    """

    def __init__(
        self,
        version: float | None = None,
        exclude_private: bool = True,
        strategies: Iterable[ExclusionStrategy] = (),
        excluded_types: Iterable[type] = (),
    ):
        self.version = version
        self.exclude_private = exclude_private
        self.strategies = tuple(strategies)
        self.excluded_types = tuple(excluded_types)

    def _in_version(self, since: float | None, until: float | None) -> bool:
        if self.version is None:
            return True
        if since is not None and since > self.version:
            return False
        if until is not None and until <= self.version:
            return False
        return True

    def excludes_class(self, cls: Any) -> bool:
        if not isinstance(cls, type):
            return False
        if self.excluded_types and issubclass(cls, self.excluded_types):
            return True
        gate = cls.__dict__.get("__flexison_version__")
        if gate is not None and not self._in_version(*gate):
            return True
        return any(s.should_skip_class(cls) for s in self.strategies)

    def excludes_field(self, field: FieldAttributes, serialize: bool) -> bool:
        if field.is_class_var:
            return True
        if self.exclude_private and field.name.startswith("_"):
            return True
        options = field.options
        if options is not None:
            if serialize and not options.serialize:
                return True
            if not serialize and not options.deserialize:
                return True
            if not self._in_version(options.since, options.until):
                return True
        return any(s.should_skip_field(field) for s in self.strategies)

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if self.excludes_class(descriptor.raw):
            return _ExcludedConverter()
        return None

    def __repr__(self) -> str:
        return "Excluder()"
