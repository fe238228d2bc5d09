"""
Token stream and token sink used by converters.

Converters never see JSON text. Reading goes through a TokenReader, a
pull-style cursor over a parsed document tree with peek/consume/skip
operations; writing goes through a TokenWriter, a push-style builder with
matching begin/end calls. Text is produced and consumed only at the edges
by ``parse()`` and ``emit()``, which use the standard ``json`` module.

Because the reader walks a tree with index-based frames, taking a
short-term copy for lookahead is a cheap copy of the frame stack and never
moves the original cursor.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import math
from decimal import Decimal
from typing import Any

from flexison.errors import JsonIOError, JsonSyntaxError
from flexison.references import ReadReferences, WriteReferences


class Token(enum.Enum):
    """Kinds of token a TokenReader can be positioned at."""

    BEGIN_ARRAY = "BEGIN_ARRAY"
    END_ARRAY = "END_ARRAY"
    BEGIN_OBJECT = "BEGIN_OBJECT"
    END_OBJECT = "END_OBJECT"
    NAME = "NAME"
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    NULL = "NULL"
    END_DOCUMENT = "END_DOCUMENT"


# Root of a reader over empty input, and of a writer nothing was written to
EMPTY = object()

NON_EXECUTABLE_PREFIX = ")]}'\n"

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "=": "\\u003d",
    "'": "\\u0027",
}


def token_of(value: Any) -> Token:
    """Return the token kind that starts ``value`` in a document tree."""
    if value is None:
        return Token.NULL
    if isinstance(value, bool):
        return Token.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return Token.NUMBER
    if isinstance(value, str):
        return Token.STRING
    if isinstance(value, dict):
        return Token.BEGIN_OBJECT
    if isinstance(value, (list, tuple)):
        return Token.BEGIN_ARRAY
    raise JsonSyntaxError(f"Not a JSON value: {type(value).__name__}")


# =============================================================================
# Text edges
# =============================================================================


def parse(text: str, *, lenient: bool = False) -> Any:
    """
    Parse JSON text into a document tree.

    Args:
        text: The JSON text. Blank text yields EMPTY rather than an error.
        lenient: Accept NaN, Infinity and -Infinity literals.

    Raises:
        JsonSyntaxError: If the text is not valid JSON.
    """
    if not text.strip():
        return EMPTY

    def reject_constant(name: str):
        raise JsonSyntaxError(
            f"JSON forbids {name}; use a lenient Flexison to read special floats"
        )

    try:
        if lenient:
            return json.loads(text)
        return json.loads(text, parse_constant=reject_constant)
    except json.JSONDecodeError as exc:
        raise JsonSyntaxError(str(exc)) from exc


def emit(
    tree: Any,
    *,
    pretty: bool = False,
    html_safe: bool = False,
    non_executable: bool = False,
) -> str:
    """
    Render a document tree as JSON text.

    Args:
        tree: The tree produced by a TokenWriter.
        pretty: Indent nested values by two spaces.
        html_safe: Escape characters that are unsafe inside HTML.
        non_executable: Prefix the text so it cannot be run as a script.
    """
    if pretty:
        text = json.dumps(tree, ensure_ascii=False, indent=2, separators=(",", ": "))
    else:
        text = json.dumps(tree, ensure_ascii=False, separators=(",", ":"))
    if html_safe:
        # These characters never occur in JSON syntax outside of strings
        text = "".join(_HTML_ESCAPES.get(c, c) for c in text)
    if non_executable:
        text = NON_EXECUTABLE_PREFIX + text
    return text


# =============================================================================
# Token Reader
# =============================================================================


@dataclasses.dataclass
class _Frame:
    """Position inside one open array or object."""

    items: list
    is_object: bool
    pos: int = 0
    name_read: bool = False


class TokenReader:
    """
    Pull-style cursor over a parsed document tree.

    Attributes:
        references: The ``@id`` table and pending patches of this parse.
        lenient: Leniency flag, owned by the caller for the current call.
    """

    def __init__(self, tree: Any, references: ReadReferences | None = None):
        self._root = tree
        self._root_taken = tree is EMPTY
        self._stack: list[_Frame] = []
        self.references = references if references is not None else ReadReferences()
        self.lenient = False

    def short_term_copy(self) -> TokenReader:
        """
        Return an independent cursor at the same position.

        Advancing the copy never moves this reader. The copy shares the
        reference table, so it must only be used for lookahead.
        """
        copy = TokenReader.__new__(TokenReader)
        copy._root = self._root
        copy._root_taken = self._root_taken
        copy._stack = [dataclasses.replace(frame) for frame in self._stack]
        copy.references = self.references
        copy.lenient = self.lenient
        return copy

    def peek(self) -> Token:
        if not self._stack:
            return Token.END_DOCUMENT if self._root_taken else token_of(self._root)
        frame = self._stack[-1]
        if frame.pos >= len(frame.items):
            return Token.END_OBJECT if frame.is_object else Token.END_ARRAY
        if frame.is_object:
            if not frame.name_read:
                return Token.NAME
            return token_of(frame.items[frame.pos][1])
        return token_of(frame.items[frame.pos])

    def has_next(self) -> bool:
        return self.peek() not in (Token.END_OBJECT, Token.END_ARRAY, Token.END_DOCUMENT)

    def path(self) -> str:
        """Location of the cursor, e.g. ``$.pets[2].name``."""
        parts = ["$"]
        top = len(self._stack) - 1
        for depth, frame in enumerate(self._stack):
            # Enclosing frames have already moved past the open container
            pos = frame.pos if depth == top else frame.pos - 1
            if frame.is_object:
                if (depth != top or frame.name_read) and 0 <= pos < len(frame.items):
                    parts.append(f".{frame.items[pos][0]}")
            else:
                parts.append(f"[{pos}]")
        return "".join(parts)

    def _expect(self, *expected: Token) -> Token:
        actual = self.peek()
        if actual not in expected:
            wanted = " or ".join(t.value for t in expected)
            raise JsonSyntaxError(f"Expected {wanted} but was {actual.value} at path {self.path()}")
        return actual

    def _take(self) -> Any:
        """Consume and return the value under the cursor."""
        if not self._stack:
            self._root_taken = True
            return self._root
        frame = self._stack[-1]
        if frame.is_object:
            value = frame.items[frame.pos][1]
            frame.name_read = False
        else:
            value = frame.items[frame.pos]
        frame.pos += 1
        return value

    def begin_object(self) -> None:
        self._expect(Token.BEGIN_OBJECT)
        self._stack.append(_Frame(list(self._take().items()), is_object=True))

    def end_object(self) -> None:
        self._expect(Token.END_OBJECT)
        self._stack.pop()

    def begin_array(self) -> None:
        self._expect(Token.BEGIN_ARRAY)
        self._stack.append(_Frame(list(self._take()), is_object=False))

    def end_array(self) -> None:
        self._expect(Token.END_ARRAY)
        self._stack.pop()

    def next_name(self) -> str:
        self._expect(Token.NAME)
        frame = self._stack[-1]
        frame.name_read = True
        return frame.items[frame.pos][0]

    def next_string(self) -> str:
        token = self._expect(Token.STRING, Token.NUMBER)
        value = self._take()
        if token is Token.NUMBER:
            return str(value)
        return value

    def next_boolean(self) -> bool:
        self._expect(Token.BOOLEAN)
        return self._take()

    def next_null(self) -> None:
        self._expect(Token.NULL)
        self._take()

    def next_number(self) -> int | float | Decimal:
        """Consume a number; quoted numbers are accepted as well."""
        token = self._expect(Token.NUMBER, Token.STRING)
        path = self.path()
        value = self._take()
        if token is Token.NUMBER:
            return value
        try:
            return int(value)
        except ValueError:
            pass
        try:
            number = float(value)
        except ValueError:
            raise JsonSyntaxError(f"Expected a number but was {value!r} at path {path}") from None
        if not self.lenient and not math.isfinite(number):
            raise JsonSyntaxError(
                f"JSON forbids NaN and infinities, but was {value!r} at path {path}"
            )
        return number

    def next_int(self) -> int:
        path = self.path()
        value = self.next_number()
        if isinstance(value, int):
            return value
        if not math.isfinite(value) or value != int(value):
            raise JsonSyntaxError(f"Expected an int but was {value} at path {path}")
        return int(value)

    def next_float(self) -> float:
        return float(self.next_number())

    def skip_value(self) -> None:
        """Skip the next value, or the next name and its value."""
        if self.peek() is Token.NAME:
            self._stack[-1].name_read = True
        self._expect(
            Token.BEGIN_OBJECT, Token.BEGIN_ARRAY, Token.STRING,
            Token.NUMBER, Token.BOOLEAN, Token.NULL,
        )
        self._take()

    def read_tree(self) -> Any:
        """Consume the next value and return it as a raw document tree."""
        self._expect(
            Token.BEGIN_OBJECT, Token.BEGIN_ARRAY, Token.STRING,
            Token.NUMBER, Token.BOOLEAN, Token.NULL,
        )
        return self._take()


# =============================================================================
# Token Writer
# =============================================================================


class TokenWriter:
    """
    Push-style builder of a document tree.

    Attributes:
        serialize_nulls: Keep ``"name": null`` members instead of dropping them.
        lenient: Allow NaN and infinite floats.
        references: Visit bookkeeping for the reference protocol.
    """

    def __init__(
        self,
        *,
        serialize_nulls: bool = False,
        lenient: bool = False,
        references: WriteReferences | None = None,
    ):
        self.serialize_nulls = serialize_nulls
        self.lenient = lenient
        self.references = references if references is not None else WriteReferences()
        self._root: Any = EMPTY
        self._stack: list[dict | list] = []
        self._pending_name: str | None = None

    def _attach(self, value: Any) -> None:
        if not self._stack:
            if self._root is not EMPTY:
                raise JsonIOError("JSON must have only one top-level value.")
            self._root = value
            return
        top = self._stack[-1]
        if isinstance(top, dict):
            if self._pending_name is None:
                raise JsonSyntaxError("Object member written without a name")
            top[self._pending_name] = value
            self._pending_name = None
        else:
            top.append(value)

    def begin_object(self) -> None:
        container: dict = {}
        self._attach(container)
        self._stack.append(container)

    def end_object(self) -> None:
        if not self._stack or not isinstance(self._stack[-1], dict):
            raise JsonSyntaxError("end_object() without a matching begin_object()")
        if self._pending_name is not None:
            raise JsonSyntaxError(f"Dangling name: {self._pending_name}")
        self._stack.pop()

    def begin_array(self) -> None:
        container: list = []
        self._attach(container)
        self._stack.append(container)

    def end_array(self) -> None:
        if not self._stack or not isinstance(self._stack[-1], list):
            raise JsonSyntaxError("end_array() without a matching begin_array()")
        self._stack.pop()

    def name(self, name: str) -> None:
        if not self._stack or not isinstance(self._stack[-1], dict):
            raise JsonSyntaxError(f"Name {name!r} written outside of an object")
        if self._pending_name is not None:
            raise JsonSyntaxError(f"Name {name!r} written after dangling name {self._pending_name!r}")
        self._pending_name = name

    def value(self, value: str | int | float | bool | None) -> None:
        if value is None:
            self.null_value()
            return
        if isinstance(value, float) and not self.lenient and not math.isfinite(value):
            raise ValueError(
                f"{value} is not a valid double value as per JSON specification. "
                "To override this behavior, enable special float serialization."
            )
        self._attach(value)

    def null_value(self) -> None:
        if self._pending_name is not None and not self.serialize_nulls:
            # The member is omitted entirely
            self._pending_name = None
            return
        self._attach(None)

    def tree_value(self, tree: Any) -> None:
        """Write an already built document tree as the next value."""
        self._attach(tree)

    def get(self) -> Any:
        """Return the finished tree."""
        if self._stack or self._root is EMPTY:
            raise JsonIOError("Incomplete document")
        return self._root
