"""
Configuration for Flexison instances.

FlexisonConfig is an immutable pydantic model holding every option; a
Flexison never changes its configuration after it has been built.
FlexisonBuilder collects options fluently and creates the Flexison:

    >>> flexison = (
    ...     FlexisonBuilder()
    ...     .set_loop_policy(LoopPolicy.JSOG)
    ...     .register_converter(Path, ToStringConverter(Path))
    ...     .set_pretty_printing()
    ...     .create()
    ... )

A builder tags objects with their class under ``"@class"`` by default;
``FlexisonBuilder.safe()`` starts from a builder that does not, which is
the right choice for input from untrusted sources since class tags name
modules to import.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from flexison.adapters import LongSerializationPolicy
from flexison.converters import Converter, ConverterFactory, exact_factory, hierarchy_factory
from flexison.excluder import ExclusionStrategy
from flexison.fields import FieldNamingPolicy, NamingStrategy
from flexison.references import LoopPolicy

if TYPE_CHECKING:
    from flexison.serialize import Flexison

DEFAULT_CLASS_PROPERTY = "@class"


class ClassErrorPolicy(enum.Enum):
    """What to do with a class tag that names no loadable class."""

    THROW_EXCEPTION = "throw_exception"
    # Log a warning and read the object as a plain dict
    REPORT = "report"
    IGNORE = "ignore"


class FlexisonConfig(BaseModel):
    """
    All options of a Flexison.

    Attributes:
        class_property: Member name of the class tag, or None for no tags.
        class_mapping: Class tag values resolved without importing.
        class_error_policy: Handling of unresolvable class tags.
        loop_policy: Handling of objects visited twice while writing.
        serialize_nulls: Write ``null`` members instead of omitting them.
        pretty_printing: Indent the output.
        html_safe: Escape ``< > & = '`` in the output.
        lenient: Accept NaN and Infinity literals when reading.
        generate_non_executable_json: Prefix the output with ``)]}'``.
        serialize_special_floats: Allow NaN and Infinity when writing.
        complex_map_keys: Write maps with object keys as arrays of pairs.
        long_serialization: How integers are written.
        version: Version for JsonField and ``@versioned`` gates.
        field_naming: Attribute name to document name translation.
        exclude_private: Leave out fields whose names start with ``_``.
        exclusion_strategies: User exclusion hooks.
        excluded_types: Classes that are never read or written.
        instance_creators: Factories for empty instances, by type.
        factories: User converter factories, consulted in order.
        preprocessors: Functions applied to JSON text before parsing.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    class_property: str | None = None
    class_mapping: dict[str, Any] = Field(default_factory=dict)
    class_error_policy: ClassErrorPolicy = ClassErrorPolicy.THROW_EXCEPTION

    loop_policy: LoopPolicy = LoopPolicy.NO_CHECKS
    serialize_nulls: bool = False
    pretty_printing: bool = False
    html_safe: bool = True
    lenient: bool = False
    generate_non_executable_json: bool = False
    serialize_special_floats: bool = False
    complex_map_keys: bool = False
    long_serialization: LongSerializationPolicy = LongSerializationPolicy.DEFAULT

    version: float | None = None
    field_naming: Any = FieldNamingPolicy.IDENTITY
    exclude_private: bool = True
    exclusion_strategies: tuple[ExclusionStrategy, ...] = ()
    excluded_types: tuple[Any, ...] = ()

    instance_creators: dict[Any, Any] = Field(default_factory=dict)
    factories: tuple[ConverterFactory, ...] = ()
    preprocessors: tuple[Any, ...] = ()


class FlexisonBuilder:
    """Fluent construction of a Flexison. Every setter returns the builder."""

    def __init__(self, class_property: str | None = DEFAULT_CLASS_PROPERTY):
        self._options: dict[str, Any] = {"class_property": class_property}
        self._class_mapping: dict[str, type] = {}
        self._instance_creators: dict[Any, Callable[[], Any]] = {}
        self._factories: list[ConverterFactory] = []
        self._strategies: list[ExclusionStrategy] = []
        self._excluded_types: list[type] = []
        self._preprocessors: list[Callable[[str], str]] = []

    @classmethod
    def safe(cls) -> FlexisonBuilder:
        """A builder that writes and reads no class tags."""
        return cls(class_property=None)

    # Polymorphism

    def set_class_property(self, name: str | None = DEFAULT_CLASS_PROPERTY) -> FlexisonBuilder:
        self._options["class_property"] = name
        return self

    def set_class_mapping(self, mapping: dict[str, type]) -> FlexisonBuilder:
        self._class_mapping.update(mapping)
        return self

    def set_class_error_policy(self, policy: ClassErrorPolicy) -> FlexisonBuilder:
        self._options["class_error_policy"] = policy
        return self

    # Converters and construction

    def register_converter(self, annotation: Any, converter: Converter) -> FlexisonBuilder:
        """Use ``converter`` for exactly ``annotation``."""
        self._factories.append(exact_factory(annotation, converter))
        return self

    def register_hierarchy_converter(self, base: type, converter: Converter) -> FlexisonBuilder:
        """Use ``converter`` for ``base`` and all of its subclasses."""
        self._factories.append(hierarchy_factory(base, converter))
        return self

    def register_factory(self, factory: ConverterFactory) -> FlexisonBuilder:
        self._factories.append(factory)
        return self

    def register_instance_creator(self, annotation: Any, creator: Callable[[], Any]) -> FlexisonBuilder:
        self._instance_creators[annotation] = creator
        return self

    # Output and input format

    def set_loop_policy(self, policy: LoopPolicy) -> FlexisonBuilder:
        self._options["loop_policy"] = policy
        return self

    def serialize_nulls(self) -> FlexisonBuilder:
        self._options["serialize_nulls"] = True
        return self

    def set_pretty_printing(self) -> FlexisonBuilder:
        self._options["pretty_printing"] = True
        return self

    def disable_html_escaping(self) -> FlexisonBuilder:
        self._options["html_safe"] = False
        return self

    def set_lenient(self) -> FlexisonBuilder:
        self._options["lenient"] = True
        return self

    def generate_non_executable_json(self) -> FlexisonBuilder:
        self._options["generate_non_executable_json"] = True
        return self

    def serialize_special_floats(self) -> FlexisonBuilder:
        self._options["serialize_special_floats"] = True
        return self

    def enable_complex_map_keys(self) -> FlexisonBuilder:
        self._options["complex_map_keys"] = True
        return self

    def set_long_serialization_policy(self, policy: LongSerializationPolicy) -> FlexisonBuilder:
        self._options["long_serialization"] = policy
        return self

    # Field selection

    def set_version(self, version: float) -> FlexisonBuilder:
        self._options["version"] = version
        return self

    def set_field_naming_policy(self, policy: FieldNamingPolicy | NamingStrategy) -> FlexisonBuilder:
        self._options["field_naming"] = policy
        return self

    def include_private(self) -> FlexisonBuilder:
        self._options["exclude_private"] = False
        return self

    def add_exclusion_strategy(self, strategy: ExclusionStrategy) -> FlexisonBuilder:
        self._strategies.append(strategy)
        return self

    def exclude_types(self, *types: type) -> FlexisonBuilder:
        self._excluded_types.extend(types)
        return self

    def add_preprocessor(self, preprocessor: Callable[[str], str]) -> FlexisonBuilder:
        self._preprocessors.append(preprocessor)
        return self

    def build_config(self) -> FlexisonConfig:
        return FlexisonConfig(
            **self._options,
            class_mapping=dict(self._class_mapping),
            instance_creators=dict(self._instance_creators),
            factories=tuple(self._factories),
            exclusion_strategies=tuple(self._strategies),
            excluded_types=tuple(self._excluded_types),
            preprocessors=tuple(self._preprocessors),
        )

    def create(self) -> Flexison:
        from flexison.serialize import Flexison

        return Flexison(self.build_config())
