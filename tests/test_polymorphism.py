"""Tests for class tags and reading runtime subtypes."""

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import pytest

from flexison import ClassErrorPolicy, Flexison, FlexisonBuilder
from flexison.errors import JsonSyntaxError, TypeMismatchError


class Animal(abc.ABC):
    name: str

    @abc.abstractmethod
    def sound(self) -> str: ...


@dataclass
class Dog(Animal):
    name: str
    good: bool = True

    def sound(self):
        return "woof"


@dataclass
class Cat(Animal):
    name: str
    lives: int = 9

    def sound(self):
        return "meow"


@dataclass
class Zoo:
    animals: list[Animal] = field(default_factory=list)
    star: Optional[Animal] = None


@dataclass
class Holder:
    anything: Any = None


DOG = "test_polymorphism.Dog"


@pytest.fixture
def flexison():
    return FlexisonBuilder().create()


class TestWriting:
    def test_tag_comes_first(self, flexison):
        assert flexison.to_json(Dog("rex")) == f'{{"@class":"{DOG}","name":"rex","good":true}}'

    def test_runtime_type_of_abstract_field(self, flexison):
        tree = flexison.to_tree(Zoo([Cat("tom")], Dog("rex")))
        assert tree["animals"][0]["@class"] == "test_polymorphism.Cat"
        assert tree["star"] == {"@class": DOG, "name": "rex", "good": True}

    def test_local_classes_are_untagged(self, flexison):
        @dataclass
        class Local:
            x: int

        assert flexison.to_json(Local(1)) == '{"x":1}'

    def test_custom_class_property(self):
        flexison = FlexisonBuilder().set_class_property("_type").create()
        assert flexison.to_tree(Dog("rex"))["_type"] == DOG


class TestReading:
    def test_abstract_field_reads_subtype(self, flexison):
        zoo = Zoo([Cat("tom", 3), Dog("rex")], Dog("fido", False))
        copy = flexison.from_json(flexison.to_json(zoo), Zoo)
        assert copy == zoo
        assert copy.star.sound() == "woof"

    def test_object_slot_reads_subtype(self, flexison):
        assert flexison.from_json(f'{{"@class":"{DOG}","name":"rex"}}') == Dog("rex")

    def test_any_field(self, flexison):
        holder = flexison.from_json(flexison.to_json(Holder(Cat("tom"))), Holder)
        assert holder.anything == Cat("tom")

    def test_untagged_object_reads_as_dict(self, flexison):
        assert flexison.from_json('{"a":[1,{"b":2}]}') == {"a": [1, {"b": 2}]}

    def test_tag_must_be_a_subclass(self, flexison):
        text = '{"animals":[{"@class":"test_polymorphism.Zoo"}]}'
        with pytest.raises(TypeMismatchError, match="not a subclass"):
            flexison.from_json(text, Zoo)

    def test_tag_further_down_changes_class(self, flexison):
        text = f'{{"name":"rex","@class":"{DOG}","good":false}}'
        assert flexison.from_json(text) == Dog("rex", False)

    def test_change_class_coerces_fields(self, flexison):
        text = '{"lives":"7","@class":"test_polymorphism.Cat","name":["tom"]}'
        assert flexison.from_json(text) == Cat("tom", 7)

    def test_abstract_without_tag_reads_untyped(self):
        flexison = FlexisonBuilder.safe().create()
        zoo = flexison.from_json('{"animals":[{"name":"rex"}]}', Zoo)
        assert zoo.animals == [{"name": "rex"}]

    def test_class_mapping(self):
        flexison = FlexisonBuilder().set_class_mapping({"dog": Dog}).create()
        assert flexison.from_json('{"@class":"dog","name":"rex"}') == Dog("rex")


class TestUnknownClasses:
    TEXT = '{"@class":"nowhere.Missing","name":"rex"}'

    def test_throw(self, flexison):
        with pytest.raises(JsonSyntaxError, match="nowhere.Missing"):
            flexison.from_json(self.TEXT)

    def test_report(self, caplog):
        flexison = FlexisonBuilder().set_class_error_policy(ClassErrorPolicy.REPORT).create()
        with caplog.at_level(logging.WARNING, logger="flexison"):
            result = flexison.from_json(self.TEXT)
        assert result == {"@class": "nowhere.Missing", "name": "rex"}
        assert "nowhere.Missing" in caplog.text

    def test_ignore(self):
        flexison = FlexisonBuilder().set_class_error_policy(ClassErrorPolicy.IGNORE).create()
        assert flexison.from_json(self.TEXT, Animal) == {"@class": "nowhere.Missing", "name": "rex"}

    def test_remove_class_property(self, flexison):
        assert flexison.remove_class_property(flexison.to_json(Dog("rex"))) == '{"name":"rex","good":true}'
        assert Flexison().remove_class_property(self.TEXT) == self.TEXT
