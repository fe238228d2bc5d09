"""
Structural type descriptors for the flexison library.

A TypeDescriptor is the cache key of every converter lookup. It wraps a
raw class plus its ordered generic arguments, so two annotations that
describe the same type compare equal regardless of how they were spelled:

    >>> TypeDescriptor.of(list[str]) == TypeDescriptor.of(typing.List[str])
    True

Annotations are normalised on the way in:
- Optional[X] and X | None describe X (every slot may hold None)
- Annotated[X, ...] describes X (field metadata is read elsewhere)
- Any, unions of several types and unresolved forward references describe
  the catch-all ``object``
- TypeVars are replaced by their binding, their bound, or ``object``
"""

from __future__ import annotations

import dataclasses
import types
import typing
from typing import Annotated, Any, ClassVar, ForwardRef, Literal, TypeVar, Union


_UNION_ORIGINS = (Union, types.UnionType)


@dataclasses.dataclass(frozen=True)
class TypeDescriptor:
    """
    Canonical, hashable description of a possibly generic type.

    Attributes:
        raw: The runtime class (``list`` for ``list[str]``).
        args: Descriptors of the generic arguments, in declaration order.
    """

    raw: Any
    args: tuple[TypeDescriptor, ...] = ()

    @classmethod
    def of(
        cls,
        annotation: Any,
        bindings: dict[TypeVar, TypeDescriptor] | None = None,
    ) -> TypeDescriptor:
        """
        Build a descriptor from a type annotation.

        Args:
            annotation: A class, a typing construct or another descriptor.
            bindings: Substitutions for type variables, used when binding
                the fields of a parameterised generic class.

        Returns:
            The normalised descriptor.
        """
        if isinstance(annotation, TypeDescriptor):
            return annotation
        if annotation is None or annotation is type(None):
            return NONE
        if annotation is Any or annotation is object:
            return OBJECT
        if annotation is Ellipsis:
            return ELLIPSIS
        if isinstance(annotation, TypeVar):
            if bindings and annotation in bindings:
                return bindings[annotation]
            bound = annotation.__bound__
            return cls.of(bound, bindings) if bound is not None else OBJECT
        if isinstance(annotation, (str, ForwardRef)):
            return OBJECT

        # NewType("UserId", int) describes int
        supertype = getattr(annotation, "__supertype__", None)
        if supertype is not None:
            return cls.of(supertype, bindings)

        origin = typing.get_origin(annotation)
        args = typing.get_args(annotation)

        if origin is Annotated:
            return cls.of(args[0], bindings)
        if origin is ClassVar:
            return cls.of(args[0], bindings) if args else OBJECT
        if origin in _UNION_ORIGINS:
            members = [a for a in args if a is not type(None)]
            if len(members) == 1:
                return cls.of(members[0], bindings)
            return OBJECT
        if origin is Literal:
            return cls(type(args[0])) if args else OBJECT
        if origin is None:
            return cls(annotation) if isinstance(annotation, type) else OBJECT
        if not isinstance(origin, type):
            return OBJECT
        return cls(origin, tuple(cls.of(a, bindings) for a in args))

    @property
    def is_catch_all(self) -> bool:
        """True for ``object``/``Any``, which carry no declared structure."""
        return self.raw is object

    @property
    def is_variadic_tuple(self) -> bool:
        """True for ``tuple[X, ...]``."""
        return len(self.args) == 2 and self.args[1] == ELLIPSIS

    def arg(self, index: int) -> TypeDescriptor:
        """Return the generic argument at ``index``, or ``object`` if undeclared."""
        if index < len(self.args):
            return self.args[index]
        return OBJECT

    def is_subclass(self, base: type | tuple[type, ...]) -> bool:
        """issubclass() that tolerates non-class raw types."""
        try:
            return isinstance(self.raw, type) and issubclass(self.raw, base)
        except TypeError:
            return False

    def type_bindings(self) -> dict[TypeVar, TypeDescriptor]:
        """Map the raw class's type parameters to this descriptor's arguments."""
        params = getattr(self.raw, "__parameters__", ())
        return {p: self.arg(i) for i, p in enumerate(params) if isinstance(p, TypeVar)}

    def __str__(self) -> str:
        name = getattr(self.raw, "__qualname__", None) or repr(self.raw)
        if self == ELLIPSIS:
            return "..."
        if not self.args:
            return name
        return f"{name}[{', '.join(str(a) for a in self.args)}]"


OBJECT = TypeDescriptor(object)
NONE = TypeDescriptor(type(None))
ELLIPSIS = TypeDescriptor(type(Ellipsis))


def admits_none(annotation: Any) -> bool:
    """
    Check whether an annotation explicitly allows None.

    A non-optional ``int``, ``float`` or ``bool`` field keeps its current
    value when the document holds null; Optional fields are set to None.
    """
    if annotation is None or annotation is type(None) or annotation is Any:
        return True
    origin = typing.get_origin(annotation)
    if origin is Annotated:
        return admits_none(typing.get_args(annotation)[0])
    if origin in _UNION_ORIGINS:
        return any(a is type(None) for a in typing.get_args(annotation))
    return False
