"""
A factory that rewrites a class's JSON text before reading it.

Useful when a stored format has drifted, e.g. a field was renamed:

    >>> legacy = RegexFirstFactory(Key, r'"k":', '"name":').eg('{"k":1}', '{"name":1}')
    >>> flexison = FlexisonBuilder().register_factory(legacy).create()

Writing is left to the converter the chain would otherwise have used.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from flexison.converters import Converter, ConverterFactory
from flexison.descriptors import TypeDescriptor
from flexison.errors import JsonSyntaxError
from flexison.stream import TokenReader, TokenWriter

if TYPE_CHECKING:
    from flexison.registry import Resolver


class RegexFirstFactory(ConverterFactory):
    """
    Args:
        cls: The class whose documents are rewritten.
        pattern: Regular expression applied to the compact JSON text.
        replacement: Replacement, in ``re.sub()`` syntax.
    """

    def __init__(self, cls: type, pattern: str, replacement: str):
        self.cls = cls
        self.pattern = re.compile(pattern)
        self.replacement = replacement

    def eg(self, before: str, after: str) -> RegexFirstFactory:
        """
        Check the rewrite on an example.

        Returns:
            self, so that checks can be chained onto the constructor.

        Raises:
            AssertionError: If rewriting ``before`` does not give ``after``.
        """
        rewritten = self.pattern.sub(self.replacement, before)
        if rewritten != after:
            raise AssertionError(f"{before!r} was rewritten to {rewritten!r}, not {after!r}")
        return self

    def create(self, resolver: Resolver, descriptor: TypeDescriptor) -> Converter | None:
        if descriptor.raw is not self.cls:
            return None
        return _RegexFirstConverter(self, resolver.resolve_skipping(self, descriptor))

    def __repr__(self) -> str:
        return f"RegexFirstFactory({self.cls.__qualname__}, {self.pattern.pattern!r})"


class _RegexFirstConverter(Converter):
    def __init__(self, factory: RegexFirstFactory, delegate: Converter):
        self.factory = factory
        self.delegate = delegate

    @property
    def reflective(self) -> bool:
        return self.delegate.reflective

    @property
    def reads_arrays(self) -> bool:
        return self.delegate.reads_arrays

    def read(self, reader: TokenReader) -> Any:
        text = json.dumps(reader.read_tree(), ensure_ascii=False, separators=(",", ":"))
        rewritten = self.factory.pattern.sub(self.factory.replacement, text)
        try:
            tree = json.loads(rewritten)
        except json.JSONDecodeError as exc:
            raise JsonSyntaxError(f"Rewriting {self.factory.cls.__qualname__} gave invalid JSON: {exc}") from exc
        return self.delegate.from_tree(tree, reader.references)

    def write(self, writer: TokenWriter, value: Any) -> None:
        self.delegate.write(writer, value)
