"""Exceptions raised by flexison."""

from __future__ import annotations


class FlexisonError(Exception):
    """Base exception for flexison."""


class ConfigurationError(FlexisonError, TypeError):
    """No converter can represent a requested type.

    This signals an incomplete converter registration rather than a
    problem with the document being read.
    """


class JsonSyntaxError(FlexisonError, ValueError):
    """The document does not have the shape expected at a read point."""


class TypeMismatchError(JsonSyntaxError):
    """A value could not be coerced into the declared type of its slot."""


class UnresolvedReferenceError(JsonSyntaxError):
    """An ``@ref`` named an ``@id`` that the document never defined."""

    def __init__(self, ref: str):
        super().__init__(f"Could not resolve ref {ref!r}")
        self.ref = ref


class JsonIOError(FlexisonError, OSError):
    """Reading from or writing to the underlying stream failed."""


class CircularReferenceError(FlexisonError, ValueError):
    """An object was revisited while it was still being written."""
