"""
Cycle and reference bookkeeping for one top-level conversion.

Writing: WriteReferences tracks which objects have been entered and which
reference id each was given. Under the JSOG loop policy every object is
tagged with ``"@id"`` on its first visit, and later visits are written as
``{"@ref": id}``.

Reading: ReadReferences maps declared ids to the objects built for them.
A reference to an id that has not been seen yet (a forward reference)
produces a LateBinding placeholder; the slot that receives it records a
PendingPatch, and all patches are applied in order once the document has
been consumed.

Both registries are created fresh for every top-level call.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Any, Callable

from flexison.errors import CircularReferenceError, JsonSyntaxError, UnresolvedReferenceError

logger = logging.getLogger(__name__)

ID_PROPERTY = "@id"
REF_PROPERTY = "@ref"

# Returned by ReadReferences.lookup() for ids that are not defined (yet)
MISSING = object()


class LoopPolicy(enum.Enum):
    """What to do when an object is visited again while writing."""

    NO_CHECKS = "no_checks"
    QUIET_NULL = "quiet_null"
    EXCEPTION = "exception"
    JSOG = "jsog"


class VisitState(enum.Enum):
    UNSEEN = "unseen"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


# =============================================================================
# Write Side
# =============================================================================


class WriteReferences:
    """
    Identity-keyed visit tracking for one write.

    Attributes:
        policy: The loop policy this write runs under.
    """

    def __init__(self, policy: LoopPolicy = LoopPolicy.NO_CHECKS):
        self.policy = policy
        self._depth: dict[int, int] = {}
        self._complete: set[int] = set()
        self._ids: dict[int, str] = {}
        self._next_id = 1
        # Keep visited objects alive so their id() cannot be reused
        self._refs: list = []

    def state(self, obj: Any) -> VisitState:
        key = id(obj)
        if self._depth.get(key):
            return VisitState.IN_PROGRESS
        if key in self._complete:
            return VisitState.COMPLETE
        return VisitState.UNSEEN

    def enter(self, obj: Any) -> bool:
        """
        Start writing ``obj``.

        Returns:
            False if the object must be written as null instead.

        Raises:
            CircularReferenceError: Under the EXCEPTION policy, if ``obj``
                is already being written.
        """
        if self.policy is LoopPolicy.NO_CHECKS:
            return True
        key = id(obj)
        if self._depth.get(key) and self.policy is not LoopPolicy.JSOG:
            if self.policy is LoopPolicy.QUIET_NULL:
                logger.debug("Writing null for circular reference to %s", type(obj).__name__)
                return False
            raise CircularReferenceError(
                f"Circular reference to {type(obj).__qualname__} instance; "
                "use LoopPolicy.JSOG to serialize cyclic graphs"
            )
        self._depth[key] = self._depth.get(key, 0) + 1
        self._refs.append(obj)
        return True

    def leave(self, obj: Any) -> None:
        """Finish writing ``obj``."""
        if self.policy is LoopPolicy.NO_CHECKS:
            return
        key = id(obj)
        remaining = self._depth.get(key, 0) - 1
        if remaining > 0:
            self._depth[key] = remaining
        else:
            self._depth.pop(key, None)
            self._complete.add(key)

    def reference_for(self, obj: Any) -> str | None:
        """Return the id already assigned to ``obj``, if any."""
        return self._ids.get(id(obj))

    def new_id(self, obj: Any) -> str:
        """Assign the next id to ``obj``."""
        ref = str(self._next_id)
        self._next_id += 1
        self._ids[id(obj)] = ref
        return ref


# =============================================================================
# Read Side
# =============================================================================


@dataclasses.dataclass(frozen=True)
class LateBinding:
    """Placeholder for an ``@ref`` whose target has not been read yet."""

    ref: str


@dataclasses.dataclass
class PendingPatch:
    """A deferred assignment of a referenced object into ``target``."""

    target: Any
    ref: str

    def apply(self, value: Any) -> None:
        raise NotImplementedError


@dataclasses.dataclass
class FieldPatch(PendingPatch):
    field: Any = None

    def apply(self, value: Any) -> None:
        self.field.set(self.target, value)


@dataclasses.dataclass
class IndexPatch(PendingPatch):
    index: int = 0

    def apply(self, value: Any) -> None:
        self.target[self.index] = value


@dataclasses.dataclass
class KeyPatch(PendingPatch):
    key: Any = None

    def apply(self, value: Any) -> None:
        self.target[self.key] = value


@dataclasses.dataclass
class MemberPatch(PendingPatch):
    def apply(self, value: Any) -> None:
        self.target.add(value)


class ReadReferences:
    """Declared ids and pending patches for one parse."""

    def __init__(self):
        self._objects: dict[str, Any] = {}
        self._pending: list[PendingPatch] = []

    def register(self, ref: str, obj: Any) -> None:
        self._objects[ref] = obj

    def lookup(self, ref: str) -> Any:
        """Return the object declared with ``ref``, or MISSING."""
        return self._objects.get(ref, MISSING)

    def defer(self, patch: PendingPatch) -> None:
        self._pending.append(patch)

    @property
    def pending(self) -> list[PendingPatch]:
        return list(self._pending)

    def bind(self, value: Any, make_patch: Callable[[str], PendingPatch]) -> Any:
        """
        Resolve a LateBinding now, or defer it.

        Args:
            value: A value returned by a converter.
            make_patch: Builds the patch that will fill the receiving slot.

        Returns:
            The resolved object, ``value`` itself if it is not a
            LateBinding, or the LateBinding after a patch was deferred.
        """
        if not isinstance(value, LateBinding):
            return value
        found = self.lookup(value.ref)
        if found is not MISSING:
            return found
        self.defer(make_patch(value.ref))
        return value

    def resolve(self, value: Any) -> Any:
        """Resolve a top-level LateBinding after the document was read."""
        if not isinstance(value, LateBinding):
            return value
        found = self.lookup(value.ref)
        if found is MISSING:
            raise UnresolvedReferenceError(value.ref)
        return found

    def resolve_now(self, value: LateBinding, path: str) -> Any:
        """Resolve a reference that cannot be patched in later."""
        found = self.lookup(value.ref)
        if found is MISSING:
            raise JsonSyntaxError(
                f"Forward reference {value.ref!r} inside an immutable container at path {path}"
            )
        return found

    def apply_pending(self) -> None:
        """
        Apply every deferred patch in the order it was recorded.

        Raises:
            UnresolvedReferenceError: If a patch names an undefined id.
        """
        for patch in self._pending:
            found = self.lookup(patch.ref)
            if found is MISSING:
                raise UnresolvedReferenceError(patch.ref)
            patch.apply(found)
        if self._pending:
            logger.debug("Applied %d pending reference patches", len(self._pending))
        self._pending.clear()
