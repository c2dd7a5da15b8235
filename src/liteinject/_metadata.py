from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._errors import InjectNotFoundTypeError
from ._labels import label_key


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from ._container import Container

    TypeValueGetter = Callable[[Container], Any]
    BeforeCallMethod = Callable[["Container", "Metadata", list[Any]], Awaitable[None] | None]
    AfterCallMethod = Callable[
        ["Container", "Metadata", Any, list[Any], BaseException | None],
        Any,
    ]

# Internal key of the constructor, never equal to a real method name
CONSTRUCTOR_KEY = "_constructor"


def method_key(method_name: str | None = None) -> str:
    if method_name is None or method_name in ("constructor", "__init__"):
        return CONSTRUCTOR_KEY
    return method_name


@dataclass
class FieldType:
    type: str | None = None
    getter: TypeValueGetter | None = None


@dataclass
class ParameterSpec:
    """Injection description of one method's parameters."""

    types: list[str | None] = field(default_factory=list)
    getters: dict[int, TypeValueGetter] = field(default_factory=dict)
    before_call_methods: list[BeforeCallMethod] = field(default_factory=list)
    after_call_methods: list[AfterCallMethod] = field(default_factory=list)

    def type_at(self, index: int) -> str | None:
        if index < len(self.types):
            return self.types[index]
        return None

    def set_type(self, index: int, label: str) -> None:
        if index >= len(self.types):
            self.types.extend([None] * (index + 1 - len(self.types)))
        self.types[index] = label

    def reset_parameters(self) -> None:
        self.types.clear()
        self.getters = {}

    def __len__(self) -> int:
        if not self.getters:
            return len(self.types)
        return max(len(self.types), max(self.getters) + 1)


class Metadata:
    """Injection metadata collected for one class.

    Holds the class-level options, the parameter specs of its constructor and
    methods, and the labels of the fields to inject after construction.
    """

    def __init__(self, clazz: type) -> None:
        self.clazz = clazz
        self.injectable = False
        self.module_name: str | None = None
        self.singleton = False
        self.create_immediately = False
        self.override_parent = False
        self.on_create: Callable[[object], None] | None = None
        # True while the constructor spec is the one inherited from a parent class
        self.copied_constructor_params = False
        self.method_parameter_types: dict[str, ParameterSpec] = {}
        self.parent_class_names: list[str] = []
        self._field_types: dict[str, FieldType] = {}
        self._user_data: dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"Metadata({self.clazz.__name__}, injectable={self.injectable})"

    @property
    def name(self) -> str:
        return self.clazz.__name__

    @property
    def field_types(self) -> dict[str, FieldType]:
        return self._field_types

    @property
    def user_data(self) -> dict[str, Any]:
        return self._user_data

    def get_method_parameter_types(self, method_name: str | None = None) -> ParameterSpec:
        key = method_key(method_name)
        spec = self.method_parameter_types.get(key)
        if spec is None:
            spec = self.method_parameter_types[key] = ParameterSpec()
        return spec

    def find_method_parameter_types(self, method_name: str | None = None) -> ParameterSpec | None:
        return self.method_parameter_types.get(method_key(method_name))

    def discard_copied_constructor_params(self) -> None:
        if not self.copied_constructor_params:
            return
        self.copied_constructor_params = False
        self.get_method_parameter_types().reset_parameters()

    def merge(self, parent: Metadata) -> Metadata:
        """Merge a parent class's metadata into this one.

        Field types and user data entries of this class win over the parent's.
        The parent's constructor parameters are copied unless this class already
        declares its own, so merging the same parent again changes nothing.
        """
        self._field_types = _deep_merge(parent._field_types, self._field_types)
        self._user_data = _deep_merge(parent._user_data, self._user_data)

        parent_params = parent.method_parameter_types.get(CONSTRUCTOR_KEY)
        own_params = self.method_parameter_types.get(CONSTRUCTOR_KEY)
        if parent_params is not None and (own_params is None or self.copied_constructor_params):
            self.copied_constructor_params = True
            self.method_parameter_types[CONSTRUCTOR_KEY] = ParameterSpec(
                types=list(parent_params.types),
                getters=dict(parent_params.getters),
            )
        return self


def fill_in_method_parameter_types(
    spec: ParameterSpec,
    paramtypes: Sequence[Any] | Mapping[int, Any] | None = None,
    param_getters: Sequence[TypeValueGetter] | Mapping[int, TypeValueGetter] | None = None,
    native_types: Sequence[Any] | None = None,
) -> None:
    """Fill the unset slots of `spec`.

    Slots already holding a label or getter are kept, so explicit per-parameter
    labels must be written before this runs. `native_types` are the introspected
    parameter annotations, `None` for a parameter without one.
    """
    if paramtypes is None and param_getters is None and native_types is None:
        msg = "Cannot determine the parameter types from annotations, they must be specified"
        raise InjectNotFoundTypeError(msg)

    for index, label in _indexed(paramtypes):
        if label is not None and spec.type_at(index) is None:
            spec.set_type(index, label_key(label))

    for index, getter in _indexed(param_getters):
        if getter is not None and index not in spec.getters:
            spec.getters[index] = getter

    if native_types is None:
        return

    for index, native in enumerate(native_types):
        if native is not None and spec.type_at(index) is None:
            spec.set_type(index, label_key(native))

    missing = [i for i in range(len(native_types)) if spec.type_at(i) is None and i not in spec.getters]
    if missing:
        msg = f"Parameters at positions {missing} have no type label and no getter"
        raise InjectNotFoundTypeError(msg)


def _indexed(items: Sequence[Any] | Mapping[int, Any] | None) -> Iterable[tuple[int, Any]]:
    if items is None:
        return ()
    if isinstance(items, Mapping):
        return items.items()
    return enumerate(items)


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for source in (base, override):
        for key, value in source.items():
            current = merged.get(key)
            if isinstance(value, Mapping):
                merged[key] = _deep_merge(current if isinstance(current, Mapping) else {}, value)
            else:
                merged[key] = value
    return merged
