"""Label-based dependency injection engine.

Classes are described in a `Registry` (constructor parameters, injected fields,
method parameters and call hooks) and resolved by a `Container`, which binds
labels to values, factories, getters or injectable classes and can fall back to
a parent container.

Exports:
- `Registry`: per-class injection metadata, with registration calls and decorators.
- `Container`: binding table and resolver; builds object graphs with cycle detection
  and calls registered methods with injected arguments.
- `ContainerLabel` / `container_label`: typed opaque labels.
- The error classes raised by both.
"""

from ._container import Container, ContainerMember, MemberKind
from ._errors import (
    ContainerRepeatLoadError,
    DependencyCycleError,
    ForbiddenOverrideInjectableError,
    InjectError,
    InjectNotFoundTypeError,
    InvalidValueError,
    MethodNotDecoratedInjectError,
    NotExistLabelError,
)
from ._labels import ContainerLabel, container_label, is_container_label
from ._metadata import FieldType, Metadata, ParameterSpec, fill_in_method_parameter_types
from ._registry import Registry


__all__ = [
    "Container",
    "ContainerLabel",
    "ContainerMember",
    "ContainerRepeatLoadError",
    "DependencyCycleError",
    "FieldType",
    "ForbiddenOverrideInjectableError",
    "InjectError",
    "InjectNotFoundTypeError",
    "InvalidValueError",
    "MemberKind",
    "Metadata",
    "MethodNotDecoratedInjectError",
    "NotExistLabelError",
    "ParameterSpec",
    "Registry",
    "container_label",
    "fill_in_method_parameter_types",
    "is_container_label",
]
