"""
Best-effort coercion of untyped document values into declared types.

Values read without a declared type (through ``object``-typed slots or a
class-tagged map) arrive as dicts, lists and scalars. When such a value is
assigned to a typed field, Coercer.coerce() reconciles the two, trying in
order:

1. values that already fit (containers are still coerced element-wise)
2. numeric narrowing and widening
3. byte narrowing, from a list of ints
4. strings, round-tripped through the target type's converter
5. numbers into ``str``
6. dicts into the declared mapping type, or through the target converter
7. arrays into the declared container, element by element; a
   single-element array into a scalar slot is unwrapped

Anything else raises TypeMismatchError.
"""

from __future__ import annotations

import collections.abc
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from flexison.constructors import ConstructorRegistry
from flexison.descriptors import TypeDescriptor
from flexison.errors import TypeMismatchError
from flexison.references import IndexPatch, KeyPatch, LateBinding, MemberPatch, ReadReferences

if TYPE_CHECKING:
    from flexison.registry import ConverterRegistry

_NUMBER_TYPES = (int, float, Decimal)


def _is_number(value: Any) -> bool:
    return isinstance(value, _NUMBER_TYPES) and not isinstance(value, bool)


def _cast_number(value: Any, target: type) -> Any:
    if target is Decimal:
        return Decimal(str(value))
    return target(value)


class Coercer:
    """
    Args:
        registry: Supplies the converters strings and maps are read with.
        constructors: Builds the declared containers.
    """

    def __init__(self, registry: ConverterRegistry, constructors: ConstructorRegistry):
        self.registry = registry
        self.constructors = constructors

    def coerce(
        self,
        value: Any,
        descriptor: TypeDescriptor,
        references: ReadReferences,
        label: str = "value",
    ) -> Any:
        """
        Convert ``value`` into the type described by ``descriptor``.

        Args:
            value: An untyped document value.
            descriptor: The declared type of the receiving slot.
            references: The reference table of the current parse; forward
                references inside containers are re-deferred onto the
                containers built here.
            label: Names the slot in error messages.

        Raises:
            TypeMismatchError: If no coercion applies.
        """
        if value is None or isinstance(value, LateBinding) or descriptor.is_catch_all:
            return value
        raw = descriptor.raw
        is_container = isinstance(value, (list, tuple, set, frozenset, dict))

        if (
            isinstance(raw, type)
            and isinstance(value, raw)
            and not (is_container and descriptor.args)
            and not (isinstance(value, bool) and raw in _NUMBER_TYPES)
        ):
            return value
        if raw in _NUMBER_TYPES and _is_number(value):
            return _cast_number(value, raw)
        if raw in (bytes, bytearray) and isinstance(value, list) and all(_is_number(v) for v in value):
            return raw(int(v) & 0xFF for v in value)
        if isinstance(value, str):
            return self.registry.resolve(descriptor).from_tree(value, references)
        if raw is str and _is_number(value):
            return str(value)

        if isinstance(value, dict):
            if descriptor.is_subclass(collections.abc.Mapping):
                return self._mapping(value, descriptor, references, label)
            return self.registry.resolve(descriptor).from_tree(value, references)

        if isinstance(value, (list, tuple, set, frozenset)):
            if raw is collections.abc.Iterable or (
                descriptor.is_subclass(collections.abc.Collection)
                and not descriptor.is_subclass((str, bytes, bytearray, collections.abc.Mapping))
            ):
                return self._collection(list(value), descriptor, references, label)
            if len(value) == 1:
                return self.coerce(next(iter(value)), descriptor, references, label)

        raise TypeMismatchError(
            f"{label}: cannot convert {type(value).__name__} {value!r} to {descriptor}"
        )

    def _mapping(
        self,
        value: dict,
        descriptor: TypeDescriptor,
        references: ReadReferences,
        label: str,
    ) -> Any:
        target = self.constructors.get(descriptor).construct()
        key_type, value_type = descriptor.arg(0), descriptor.arg(1)
        for key, item in value.items():
            key = self.coerce(key, key_type, references, label)
            item = references.bind(item, lambda ref, key=key: KeyPatch(target, ref, key=key))
            if isinstance(item, LateBinding):
                target[key] = None
            else:
                target[key] = self.coerce(item, value_type, references, f"{label}[{key!r}]")
        return target

    def _collection(
        self,
        items: list,
        descriptor: TypeDescriptor,
        references: ReadReferences,
        label: str,
    ) -> Any:
        raw = descriptor.raw

        if descriptor.is_subclass((tuple, frozenset)):
            fixed = descriptor.is_subclass(tuple) and descriptor.args and not descriptor.is_variadic_tuple
            if fixed and len(descriptor.args) != len(items):
                raise TypeMismatchError(
                    f"{label}: expected {len(descriptor.args)} elements for {descriptor}, got {len(items)}"
                )
            result = []
            for index, item in enumerate(items):
                element = descriptor.arg(index if fixed else 0)
                if isinstance(item, LateBinding):
                    item = references.resolve_now(item, f"{label}[{index}]")
                result.append(self.coerce(item, element, references, f"{label}[{index}]"))
            return raw._make(result) if hasattr(raw, "_make") else raw(result)

        container = self.constructors.get(descriptor).construct()
        element = descriptor.arg(0)
        for index, item in enumerate(items):
            if hasattr(container, "append"):
                item = references.bind(item, lambda ref, index=index: IndexPatch(container, ref, index=index))
                if isinstance(item, LateBinding):
                    container.append(None)
                else:
                    container.append(self.coerce(item, element, references, f"{label}[{index}]"))
            else:
                item = references.bind(item, lambda ref: MemberPatch(container, ref))
                if not isinstance(item, LateBinding):
                    container.add(self.coerce(item, element, references, f"{label}[{index}]"))
        return container
