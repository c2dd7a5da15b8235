from __future__ import annotations

import inspect
import logging
import types
import typing
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, get_type_hints

from ._errors import InjectNotFoundTypeError
from ._labels import label_key
from ._metadata import CONSTRUCTOR_KEY, FieldType, Metadata, fill_in_method_parameter_types, method_key


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from ._metadata import AfterCallMethod, BeforeCallMethod, TypeValueGetter

    AfterExecute = Callable[..., None]
    Labels = Sequence[Any] | Mapping[int, Any]
    Getters = Sequence[TypeValueGetter] | Mapping[int, TypeValueGetter]

# Sentinel: read parameter types from the function annotations
INTROSPECT: Any = object()


class Registry:
    """Process-lifetime store of injection metadata, keyed by class name.

    Containers read injectable classes from the registry they were built with;
    tests can create a fresh registry to stay isolated from each other.

    Registration happens through explicit calls (`register`, `register_method`,
    `register_field`, ...) or through the decorator helpers built on them::

        registry = Registry()

        @registry.injectable(singleton=True)
        class Engine: ...

        @registry.injectable
        class Car:
            def __init__(self, engine: Engine):
                self.engine = engine
    """

    def __init__(self) -> None:
        self._metadata: dict[str, Metadata] = {}

    def __len__(self) -> int:
        return len(self._metadata)

    def __contains__(self, cls: object) -> bool:
        return self.get(cls) is not None

    def all_metadata(self) -> Iterator[Metadata]:
        return iter(list(self._metadata.values()))

    def get(self, cls_or_instance: object) -> Metadata | None:
        return self._metadata.get(_class_of(cls_or_instance).__name__)

    def get_or_create(self, cls_or_instance: object) -> Metadata:
        """Return the metadata of a class, creating it on first access.

        A new record lists every ancestor name (nearest first) and is merged once
        with the nearest ancestor that already has metadata.
        """
        clazz = _class_of(cls_or_instance)
        metadata = self._metadata.get(clazz.__name__)
        if metadata is not None:
            if metadata.clazz is not clazz:
                logger.warning(
                    "Class %s (%s) shares its name with an already registered class; using the existing metadata",
                    clazz.__name__,
                    clazz.__qualname__,
                )
            return metadata

        metadata = self._metadata[clazz.__name__] = Metadata(clazz)
        merged = False
        for parent in clazz.__mro__[1:]:
            if parent is object:
                continue
            metadata.parent_class_names.append(parent.__name__)
            if merged:
                continue
            parent_metadata = self._metadata.get(parent.__name__)
            if parent_metadata is not None and parent_metadata is not metadata:
                merged = True
                metadata.merge(parent_metadata)
        return metadata

    # Explicit registration

    def register(
        self,
        cls: type,
        *,
        module_name: str | None = None,
        singleton: bool = False,
        create_immediately: bool = False,
        override_constructor: bool = True,
        override_parent: bool = False,
        on_create: Callable[[Any], None] | None = None,
        paramtypes: Labels | None = None,
        param_getters: Getters | None = None,
        native_types: Sequence[Any] | None = INTROSPECT,
    ) -> Metadata:
        """Mark a class injectable and record its constructor parameters.

        `native_types` defaults to the annotations of the class's own `__init__`.
        A class without its own `__init__` keeps the constructor parameters copied
        from an injectable parent; when there is none, the inherited `__init__`
        is introspected instead.
        """
        metadata = self.get_or_create(cls)
        metadata.injectable = True
        metadata.module_name = module_name
        metadata.singleton = singleton
        metadata.create_immediately = create_immediately
        metadata.override_parent = override_parent
        metadata.on_create = on_create

        spec = metadata.get_method_parameter_types()
        if native_types is INTROSPECT:
            native_types = _constructor_types(cls, inherited=not metadata.copied_constructor_params)

        if not override_constructor and metadata.copied_constructor_params:
            return metadata

        if native_types is not None:
            # The class declares its own constructor: drop the inherited shape
            metadata.discard_copied_constructor_params()

        fill_in_method_parameter_types(
            spec,
            paramtypes,
            param_getters,
            native_types if native_types is not None else [],
        )
        return metadata

    def register_parameter(
        self,
        cls: type,
        index: int,
        *,
        method_name: str | None = None,
        type_label: Any = None,
        getter: TypeValueGetter | None = None,
        after_execute: AfterExecute | None = None,
    ) -> Metadata:
        """Set the label or getter of one parameter, overriding what is already there."""
        metadata = self.get_or_create(cls)
        spec = metadata.get_method_parameter_types(method_name)
        if method_key(method_name) == CONSTRUCTOR_KEY:
            metadata.discard_copied_constructor_params()

        if type_label is not None:
            spec.set_type(index, label_key(type_label))
        if getter is not None:
            spec.getters[index] = getter

        if after_execute is not None:
            after_execute(metadata, metadata.name, method_name or "constructor", index)
        return metadata

    def register_method(
        self,
        cls: type,
        method_name: str,
        *,
        paramtypes: Labels | None = None,
        param_getters: Getters | None = None,
        native_types: Sequence[Any] | None = INTROSPECT,
        before_call_method: BeforeCallMethod | None = None,
        after_call_method: AfterCallMethod | None = None,
        after_execute: AfterExecute | None = None,
    ) -> Metadata:
        metadata = self.get_or_create(cls)
        spec = metadata.get_method_parameter_types(method_name)
        if native_types is INTROSPECT:
            native_types = _native_parameter_types(inspect.getattr_static(cls, method_name), cls)

        fill_in_method_parameter_types(spec, paramtypes, param_getters, native_types)
        if before_call_method is not None:
            spec.before_call_methods.append(before_call_method)
        if after_call_method is not None:
            spec.after_call_methods.append(after_call_method)

        if after_execute is not None:
            after_execute(metadata, metadata.name, method_name)
        return metadata

    def register_field(
        self,
        cls: type,
        name: str,
        *,
        type_label: Any = None,
        getter: TypeValueGetter | None = None,
        after_execute: AfterExecute | None = None,
    ) -> Metadata:
        """Record a field assigned on every instance right after construction."""
        metadata = self.get_or_create(cls)
        if type_label is None:
            type_label = _native_label(_annotations(cls, cls).get(name, inspect.Parameter.empty))
        if type_label is None and getter is None:
            msg = f"Cannot determine the type of field {cls.__name__}.{name}, it must be specified"
            raise InjectNotFoundTypeError(msg)

        metadata.field_types[name] = FieldType(
            type=label_key(type_label) if type_label is not None else None,
            getter=getter,
        )
        if after_execute is not None:
            after_execute(metadata, metadata.name, name)
        return metadata

    def add_before_call_method(self, cls: type, method_name: str, hook: BeforeCallMethod) -> Metadata:
        metadata = self.get_or_create(cls)
        metadata.get_method_parameter_types(method_name).before_call_methods.append(hook)
        return metadata

    def add_after_call_method(self, cls: type, method_name: str, hook: AfterCallMethod) -> Metadata:
        metadata = self.get_or_create(cls)
        metadata.get_method_parameter_types(method_name).after_call_methods.append(hook)
        return metadata

    # Decorator helpers

    def injectable(self, cls: type | None = None, **options: Any) -> Any:
        """Class decorator for `register`, usable bare or with options."""

        def decorate(clazz: type) -> type:
            self.register(clazz, **options)
            return clazz

        if cls is not None:
            return decorate(cls)
        return decorate

    def inject(
        self,
        *,
        paramtypes: Labels | None = None,
        param_getters: Getters | None = None,
        before_call_method: BeforeCallMethod | None = None,
        after_call_method: AfterCallMethod | None = None,
        after_execute: AfterExecute | None = None,
    ) -> Callable[[Any], _MemberMarker]:
        """Method decorator for `register_method`.

        The owning class is only known once the class body is executed, so the
        method is registered from `__set_name__`.
        """

        def decorate(func: Any) -> _MemberMarker:
            return _MemberMarker.wrap(func).add(
                lambda owner, name: self.register_method(
                    owner,
                    name,
                    paramtypes=paramtypes,
                    param_getters=param_getters,
                    before_call_method=before_call_method,
                    after_call_method=after_call_method,
                    after_execute=after_execute,
                )
            )

        return decorate

    def before_call_method(self, hook: BeforeCallMethod) -> Callable[[Any], _MemberMarker]:
        def decorate(func: Any) -> _MemberMarker:
            return _MemberMarker.wrap(func).add(lambda owner, name: self.add_before_call_method(owner, name, hook))

        return decorate

    def after_call_method(self, hook: AfterCallMethod) -> Callable[[Any], _MemberMarker]:
        def decorate(func: Any) -> _MemberMarker:
            return _MemberMarker.wrap(func).add(lambda owner, name: self.add_after_call_method(owner, name, hook))

        return decorate

    def field(
        self,
        type_label: Any = None,
        *,
        getter: TypeValueGetter | None = None,
        after_execute: AfterExecute | None = None,
    ) -> Any:
        """Class-body marker for `register_field`.

        Example:
          class Car:
              engine: Engine = registry.field()
              plate = registry.field("plate")

        The marker removes itself from the class once registered.
        """
        return _FieldMarker(self, type_label, getter, after_execute)


class _MemberMarker:
    """Wraps a method until its owner class exists, then registers and unwraps it."""

    def __init__(self, func: Any) -> None:
        self.func = func
        self._actions: list[Callable[[type, str], Any]] = []

    @classmethod
    def wrap(cls, func: Any) -> _MemberMarker:
        if isinstance(func, _MemberMarker):
            return func
        return cls(func)

    def add(self, action: Callable[[type, str], Any]) -> _MemberMarker:
        self._actions.append(action)
        return self

    def __set_name__(self, owner: type, name: str) -> None:
        setattr(owner, name, self.func)
        for action in self._actions:
            action(owner, name)


class _FieldMarker:
    def __init__(
        self,
        registry: Registry,
        type_label: Any,
        getter: TypeValueGetter | None,
        after_execute: AfterExecute | None,
    ) -> None:
        self._registry = registry
        self._type_label = type_label
        self._getter = getter
        self._after_execute = after_execute

    def __set_name__(self, owner: type, name: str) -> None:
        delattr(owner, name)
        self._registry.register_field(
            owner,
            name,
            type_label=self._type_label,
            getter=self._getter,
            after_execute=self._after_execute,
        )


def _class_of(cls_or_instance: object) -> type:
    if inspect.isclass(cls_or_instance):
        return cls_or_instance
    return type(cls_or_instance)


def _constructor_types(cls: type, *, inherited: bool) -> list[Any] | None:
    """Annotations of the constructor parameters, `None` when there is no constructor to read."""
    init = cls.__dict__.get("__init__")
    if init is None and inherited and cls.__init__ is not object.__init__:
        init = cls.__init__
    if init is None:
        return None
    return _native_parameter_types(init, cls)


def _native_parameter_types(func: Any, owner: type) -> list[Any] | None:
    bound_first = not isinstance(func, staticmethod)
    if isinstance(func, (staticmethod, classmethod)):
        func = func.__func__
    if not callable(func):
        return None

    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return None

    hints = _annotations(func, owner)
    if bound_first:
        # `self` or `cls`
        params = params[1:]
    positional = [
        p for p in params if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    # trailing unannotated parameters with defaults keep their defaults
    while positional and positional[-1].default is not inspect.Parameter.empty and positional[-1].name not in hints:
        positional.pop()

    return [_native_label(hints.get(p.name, inspect.Parameter.empty)) for p in positional]


def _native_label(annotation: Any) -> Any:
    if annotation is inspect.Parameter.empty:
        return None
    origin = typing.get_origin(annotation)
    if origin is None and (inspect.isclass(annotation) or isinstance(annotation, str)):
        return annotation

    if origin in (typing.Union, types.UnionType):
        # Optional[X] and X | None
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1 and inspect.isclass(args[0]):
            return args[0]
        return None
    # list[X], type[X], Sequence[X] are labeled by their outer type
    if inspect.isclass(origin):
        return origin
    return None


def _annotations(obj: Any, owner: type) -> dict[str, Any]:
    try:
        hints = get_type_hints(obj)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, owner.__name__, owner.__qualname__)
        # fall back to the raw annotations, string labels included
        hints = dict(getattr(obj, "__annotations__", {}) or {})

    hints.pop("return", None)
    return hints
