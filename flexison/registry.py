"""
Converter resolution for the flexison library.

ConverterRegistry owns the ordered factory chain and a thread-safe cache of
the converters it has built. Each top-level lookup runs inside a Resolver,
which remembers the types it is currently building; if a factory asks for
one of those types again (directly or through a cycle of field types), it
receives a ConverterCell that is filled in once the outer construction
completes, instead of recursing forever. Converters built during a lookup
are published to the cache only once the outermost construction has
succeeded, so a failed lookup leaves no converter holding an empty cell.

Resolvers are created per lookup and passed to every factory explicitly, so
two conversions running at the same time never see each other's cells.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Iterable

from flexison.converters import Converter, ConverterCell, ConverterFactory
from flexison.descriptors import TypeDescriptor
from flexison.errors import ConfigurationError

if TYPE_CHECKING:
    from flexison.serialize import Flexison

logger = logging.getLogger(__name__)


class ConverterRegistry:
    """
    Ordered factory chain with a shared converter cache.

    Attributes:
        factories: The chain, consulted front to back.
        flexison: The facade that owns this registry, made available to
            factories that need its configuration.
    """

    def __init__(self, factories: Iterable[ConverterFactory], flexison: Flexison | None = None):
        self.factories: list[ConverterFactory] = list(factories)
        self.flexison = flexison
        self._cache: dict[TypeDescriptor, Converter] = {}
        self._lock = threading.Lock()

    def resolve(self, annotation: Any) -> Converter:
        """
        Return the converter for a type, building it if necessary.

        Raises:
            ConfigurationError: If no factory handles the type.
        """
        return Resolver(self).resolve(annotation)

    def resolve_skipping(self, skip_past: ConverterFactory, annotation: Any) -> Converter:
        """
        Return the converter the chain would produce without ``skip_past``
        and every factory before it.

        Used by factories that decorate the next converter rather than
        replace it.
        """
        return Resolver(self).resolve_skipping(skip_past, annotation)

    def insert(self, factory: ConverterFactory, descriptor: TypeDescriptor | None = None) -> None:
        """Put a factory at the front of the chain and drop a stale cache entry."""
        with self._lock:
            self.factories.insert(0, factory)
            if descriptor is None:
                self._cache.clear()
            else:
                self._cache.pop(descriptor, None)

    def cached(self, descriptor: TypeDescriptor) -> Converter | None:
        with self._lock:
            return self._cache.get(descriptor)

    def store(self, descriptor: TypeDescriptor, converter: Converter) -> Converter:
        """Cache a converter; if another thread got there first, keep theirs."""
        with self._lock:
            return self._cache.setdefault(descriptor, converter)


class Resolver:
    """
    One logical resolution over the factory chain.

    Factories receive the Resolver that is building them and must use it for
    the converters they depend on, so that recursive types see the cells of
    the constructions already in progress.
    """

    def __init__(self, registry: ConverterRegistry):
        self.registry = registry
        self._building: dict[TypeDescriptor, ConverterCell] = {}
        # Finished converters that may still hold cells of outer constructions
        self._built: dict[TypeDescriptor, Converter] = {}

    @property
    def flexison(self) -> Flexison | None:
        return self.registry.flexison

    def resolve(self, annotation: Any) -> Converter:
        descriptor = TypeDescriptor.of(annotation)
        cached = self.registry.cached(descriptor)
        if cached is None:
            cached = self._built.get(descriptor)
        if cached is not None:
            return cached
        cell = self._building.get(descriptor)
        if cell is not None:
            return cell

        cell = ConverterCell(descriptor)
        self._building[descriptor] = cell
        try:
            converter = self._create(self.registry.factories, descriptor)
            cell.set_delegate(converter)
        finally:
            del self._building[descriptor]

        self._built[descriptor] = converter
        if self._building:
            return converter
        # Outermost construction done: every cell is filled, publish them all
        built, self._built = self._built, {}
        for other, finished in built.items():
            if other != descriptor:
                self.registry.store(other, finished)
        return self.registry.store(descriptor, converter)

    def resolve_skipping(self, skip_past: ConverterFactory, annotation: Any) -> Converter:
        descriptor = TypeDescriptor.of(annotation)
        factories = self.registry.factories
        try:
            start = factories.index(skip_past) + 1
        except ValueError:
            # Not registered: the whole chain is eligible
            start = 0
        return self._create(factories[start:], descriptor)

    def _create(self, factories: list[ConverterFactory], descriptor: TypeDescriptor) -> Converter:
        for candidate in factories:
            converter = candidate.create(self, descriptor)
            if converter is not None:
                logger.debug("%r claimed %s", candidate, descriptor)
                return converter
        raise ConfigurationError(f"flexison cannot handle {descriptor}")
