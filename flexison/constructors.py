"""
Object construction for the flexison library.

Reading an object first needs an empty instance to fill. ConstructorRegistry
picks, once per type, the first available of:

1. an instance creator registered for the exact (generic) type
2. an instance creator registered for the raw class
3. the class's own no-argument constructor (``model_construct()`` for
   pydantic models), with a single-string constructor for documents that
   hold a bare string instead of an object
4. a default implementation for abstract container ABCs
5. ``cls.__new__(cls)``, which bypasses ``__init__`` entirely

Dataclass defaults are applied to allocated instances so that fields
missing from the document still exist afterwards.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import inspect
import threading
from typing import Any, Callable

from pydantic import BaseModel

from flexison.descriptors import TypeDescriptor
from flexison.errors import JsonSyntaxError


# Abstract container ABCs and the concrete class built for each, most
# specific first
DEFAULT_IMPLEMENTATIONS: tuple[tuple[type, type], ...] = (
    (collections.abc.MutableMapping, dict),
    (collections.abc.Mapping, dict),
    (collections.abc.MutableSet, set),
    (collections.abc.Set, set),
    (collections.abc.MutableSequence, list),
    (collections.abc.Sequence, list),
    (collections.abc.Collection, list),
    (collections.abc.Iterable, list),
)


class ObjectConstructor:
    """Builds empty instances of one type."""

    def __init__(self, target: Any):
        self.target = target

    def construct(self) -> Any:
        raise NotImplementedError

    def construct_from_string(self, value: str) -> Any:
        raise JsonSyntaxError(
            f"No string constructor for {getattr(self.target, '__qualname__', self.target)}; "
            f"cannot read {value!r}"
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({getattr(self.target, '__qualname__', self.target)})"


class InstanceCreatorConstructor(ObjectConstructor):
    """Delegates to a user-registered instance creator."""

    def __init__(self, target: Any, creator: Callable[[], Any]):
        super().__init__(target)
        self.creator = creator

    def construct(self) -> Any:
        return self.creator()


class PydanticConstructor(ObjectConstructor):
    """Builds an unvalidated pydantic model with its defaults filled in."""

    def construct(self) -> Any:
        return self.target.model_construct()

    def construct_from_string(self, value: str) -> Any:
        return _call_string_constructor(self.target, value)


class DefaultConstructor(ObjectConstructor):
    """
    Uses the class's declared constructors.

    ``construct()`` calls the class with no arguments when its signature
    allows that, and otherwise allocates an instance without running
    ``__init__``. ``construct_from_string()`` calls the class with the
    string as its only argument.
    """

    def __init__(self, target: type):
        super().__init__(target)
        signature = _signature(target)
        self.no_args = signature is not None and _accepts(signature)
        self.string_arg = signature is not None and _accepts(signature, "")

    def construct(self) -> Any:
        if inspect.isabstract(self.target):
            raise TypeError(f"Can't instantiate abstract class {self.target.__qualname__}")
        if self.no_args:
            return self.target()
        return allocate(self.target)

    def construct_from_string(self, value: str) -> Any:
        if not self.string_arg:
            return super().construct_from_string(value)
        return self.target(value)


class DefaultImplementationConstructor(ObjectConstructor):
    """Builds a concrete container for an abstract container type."""

    def __init__(self, target: Any, implementation: type):
        super().__init__(target)
        self.implementation = implementation

    def construct(self) -> Any:
        return self.implementation()


class AllocatorConstructor(ObjectConstructor):
    """Allocates instances without calling ``__init__``."""

    def construct(self) -> Any:
        return allocate(self.target)


def allocate(cls: type) -> Any:
    """
    Create a blank instance of ``cls`` without calling ``__init__``.

    Raises:
        TypeError: If ``cls`` is abstract and cannot be instantiated.
    """
    obj = cls.__new__(cls)
    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            if f.default is not dataclasses.MISSING:
                object.__setattr__(obj, f.name, f.default)
            elif f.default_factory is not dataclasses.MISSING:
                object.__setattr__(obj, f.name, f.default_factory())
    return obj


def _signature(cls: type) -> inspect.Signature | None:
    try:
        return inspect.signature(cls)
    except (TypeError, ValueError):
        return None


def _accepts(signature: inspect.Signature, *args: Any) -> bool:
    try:
        signature.bind(*args)
    except TypeError:
        return False
    return True


def _call_string_constructor(cls: type, value: str) -> Any:
    signature = _signature(cls)
    if signature is None or not _accepts(signature, value):
        raise JsonSyntaxError(f"No string constructor for {cls.__qualname__}; cannot read {value!r}")
    return cls(value)


class ConstructorRegistry:
    """
    Chooses and caches one ObjectConstructor per type.

    Attributes:
        instance_creators: Creators keyed by generic annotation or raw class.
    """

    def __init__(self, instance_creators: dict[Any, Callable[[], Any]] | None = None):
        self.instance_creators = {
            TypeDescriptor.of(key): creator
            for key, creator in (instance_creators or {}).items()
        }
        self._cache: dict[TypeDescriptor, ObjectConstructor] = {}
        self._lock = threading.Lock()

    def get(self, annotation: Any) -> ObjectConstructor:
        """
        Return the constructor for a type.

        Args:
            annotation: A class, typing annotation or TypeDescriptor.
        """
        descriptor = TypeDescriptor.of(annotation)
        with self._lock:
            cached = self._cache.get(descriptor)
        if cached is not None:
            return cached
        constructor = self._select(descriptor)
        with self._lock:
            return self._cache.setdefault(descriptor, constructor)

    def _select(self, descriptor: TypeDescriptor) -> ObjectConstructor:
        raw = descriptor.raw

        creator = self.instance_creators.get(descriptor)
        if creator is not None:
            return InstanceCreatorConstructor(raw, creator)
        creator = self.instance_creators.get(TypeDescriptor(raw))
        if creator is not None:
            return InstanceCreatorConstructor(raw, creator)

        if descriptor.is_subclass(BaseModel):
            return PydanticConstructor(raw)

        if isinstance(raw, type) and not inspect.isabstract(raw) and raw.__module__ != "collections.abc":
            return DefaultConstructor(raw)

        for abstract, implementation in DEFAULT_IMPLEMENTATIONS:
            if raw is abstract:
                return DefaultImplementationConstructor(raw, implementation)

        return AllocatorConstructor(raw)
