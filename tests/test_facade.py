"""Tests for the Flexison entry points and output options."""

import io
import math
from dataclasses import dataclass, field
from typing import Optional

import pydantic
import pytest

from flexison import Converter, Flexison, FlexisonBuilder, FlexisonConfig, from_json, to_json
from flexison.errors import JsonIOError, JsonSyntaxError


@dataclass
class Note:
    title: str
    body: Optional[str] = None
    tags: list[str] = field(default_factory=list)


class PeekOnly(Converter):
    """Reads nothing at all, leaving the document unconsumed."""

    def read(self, reader):
        return "peeked"

    def write(self, writer, value):
        writer.value(str(value))


class BrokenStream(io.StringIO):
    def write(self, text):
        raise OSError("disk full")


@pytest.fixture
def flexison():
    return Flexison()


class TestText:
    def test_to_json_to_stream(self, flexison):
        out = io.StringIO()
        assert flexison.to_json(Note("hi"), out=out) is None
        assert out.getvalue() == '{"title":"hi","tags":[]}'

    def test_stream_errors(self, flexison):
        with pytest.raises(JsonIOError, match="disk full"):
            flexison.to_json(Note("hi"), out=BrokenStream())

    def test_from_json_stream(self, flexison):
        assert flexison.from_json(io.StringIO('{"title":"hi"}'), Note) == Note("hi")

    def test_blank_input(self, flexison):
        assert flexison.from_json("", Note) is None
        assert flexison.from_json("  \n", Note) is None

    def test_invalid_json(self, flexison):
        with pytest.raises(JsonSyntaxError):
            flexison.from_json('{"title":', Note)

    def test_preprocessors(self):
        flexison = FlexisonBuilder.safe().add_preprocessor(lambda text: text.replace("'", '"')).create()
        assert flexison.from_json("{'title':'hi'}", Note) == Note("hi")

    def test_non_executable_prefix(self):
        flexison = FlexisonBuilder.safe().generate_non_executable_json().create()
        text = flexison.to_json(Note("hi"))
        assert text.startswith(")]}'\n")
        assert flexison.from_json(text, Note) == Note("hi")
        assert Flexison().from_json(text, Note) == Note("hi")

    def test_html_escaping(self, flexison):
        assert flexison.to_json("<a href='x'>") == '"\\u003ca href\\u003d\\u0027x\\u0027\\u003e"'
        plain = FlexisonBuilder.safe().disable_html_escaping().create()
        assert plain.to_json("<a>") == '"<a>"'

    def test_pretty_printing(self):
        flexison = FlexisonBuilder.safe().set_pretty_printing().create()
        assert flexison.to_json(Note("hi", tags=["a"])) == '{\n  "title": "hi",\n  "tags": [\n    "a"\n  ]\n}'

    def test_serialize_nulls(self):
        flexison = FlexisonBuilder.safe().serialize_nulls().create()
        assert flexison.to_json(Note("hi")) == '{"title":"hi","body":null,"tags":[]}'


class TestSpecialFloats:
    def test_rejected_by_default(self, flexison):
        with pytest.raises(ValueError, match="special float"):
            flexison.to_json(float("nan"))
        with pytest.raises(JsonSyntaxError, match="NaN"):
            flexison.from_json("NaN", float)

    def test_allowed_when_enabled(self):
        writer = FlexisonBuilder.safe().serialize_special_floats().create()
        assert writer.to_json([float("inf")]) == "[Infinity]"
        reader = FlexisonBuilder.safe().set_lenient().create()
        assert math.isnan(reader.from_json("NaN", float))


class TestTrees:
    def test_to_json_object(self, flexison):
        assert flexison.to_json_object(Note("hi", "there")) == {"title": "hi", "body": "there", "tags": []}

    def test_convert(self, flexison):
        assert flexison.convert({"title": "hi", "tags": ("a",)}, Note) == Note("hi", tags=["a"])

    def test_document_not_fully_consumed(self):
        flexison = FlexisonBuilder.safe().register_converter(Note, PeekOnly()).create()
        with pytest.raises(JsonIOError, match="not fully consumed"):
            flexison.from_json('{"title":"hi"}', Note)


class TestModuleLevel:
    def test_round_trip(self):
        text = to_json(Note("hi", tags=["x"]))
        assert text == '{"title":"hi","tags":["x"]}'
        assert from_json(text, Note) == Note("hi", tags=["x"])


class TestConfig:
    def test_config_is_frozen(self):
        config = FlexisonConfig()
        with pytest.raises(pydantic.ValidationError):
            config.serialize_nulls = True

    def test_builder_defaults(self):
        config = FlexisonBuilder().build_config()
        assert config.class_property == "@class"
        assert FlexisonBuilder.safe().build_config().class_property is None
        assert FlexisonConfig().class_property is None

    def test_repr(self, flexison):
        assert repr(flexison) == "Flexison(class_property=None, loop_policy=NO_CHECKS)"
