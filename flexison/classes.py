"""
Class names used by the polymorphism tag.

A class is written as ``"module.QualName"`` and only when it can be found
again by importing that module: classes defined inside functions, in
``__main__``, or in modules registered with
``cloudpickle.register_pickle_by_value`` stay untagged.
"""

from __future__ import annotations

import importlib

from cloudpickle.cloudpickle import _should_pickle_by_reference


def qualified_name(cls: type) -> str | None:
    """
    Return the importable name of a class.

    Returns:
        ``"module.QualName"``, or None if the class cannot be imported by
        that name from another process.
    """
    if cls.__module__ == "builtins":
        return f"builtins.{cls.__qualname__}"
    try:
        by_reference = _should_pickle_by_reference(cls)
    except TypeError:
        return None
    if not by_reference:
        return None
    return f"{cls.__module__}.{cls.__qualname__}"


def load_class(name: str) -> type:
    """
    Import a class from its qualified name.

    The longest importable module prefix wins, so both ``pkg.mod.Cls`` and
    nested ``pkg.mod.Outer.Inner`` resolve.

    Raises:
        ImportError: If no class of that name can be found.
    """
    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        try:
            obj = importlib.import_module(module_name)
        except ModuleNotFoundError:
            continue
        try:
            for attr in parts[split:]:
                obj = getattr(obj, attr)
        except AttributeError:
            continue
        if isinstance(obj, type):
            return obj
    raise ImportError(f"No class named {name!r}")
