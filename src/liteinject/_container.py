from __future__ import annotations

import dataclasses
import functools
import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._errors import (
    ContainerRepeatLoadError,
    DependencyCycleError,
    ForbiddenOverrideInjectableError,
    InjectNotFoundTypeError,
    InvalidValueError,
    MethodNotDecoratedInjectError,
    NotExistLabelError,
)
from ._labels import ContainerLabel, label_key
from ._registry import Registry


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ._metadata import FieldType, Metadata, ParameterSpec

    Label = str | ContainerLabel[Any] | type
    LoadClassListener = Callable[[type, "ContainerMember"], None]

T = TypeVar("T")


class MemberKind(Enum):
    VALUE = "value"
    FACTORY = "factory"
    GETTER = "getter"
    CLASS = "class"


@dataclass
class ContainerMember:
    """One binding of a container.

    `value` holds the bound value, the cached getter result or the cached
    singleton instance; `cached` tells whether it is set.
    """

    name: str | ContainerLabel[Any]
    kind: MemberKind
    metadata: Metadata | None = None
    value: Any = None
    cached: bool = False
    producer: Callable[..., Any] | None = None
    context: Any = None
    is_extend: bool = False


def _is_valid_value(value: object) -> bool:
    return value is not None


class Container:
    """Binds labels to values, factories, getters and injectable classes.

    - `bind_value` / `bind_factory` / `bind_getter` for plain bindings
    - `load` to bind every injectable class of the registry
    - `get_value` resolves a label, constructing injectable classes recursively
    - `call` / `call_sync` invoke a registered method with injected arguments
    - `extend` falls back to a parent container for unknown labels.
    """

    def __init__(
        self,
        registry: Registry | None = None,
        *,
        value_validator: Callable[[Any], bool] | None = None,
    ) -> None:
        self.registry = registry if registry is not None else Registry()
        self._members: dict[str | ContainerLabel[Any], ContainerMember] = {}
        self._value_validator = value_validator or _is_valid_value
        self._parent: Container | None = None
        self._parent_subscription: Callable[[], None] | None = None
        self._load_class_listeners: list[LoadClassListener] = []
        self._resolution_stack: list[str | ContainerLabel[Any]] = []
        self._loaded = False
        self._lock = threading.RLock()

    @property
    def parent(self) -> Container | None:
        return self._parent

    # Parent containers

    def extend(self, parent: Container | None = None) -> Container:
        """Set the container to fall back to, or clear it when called without one.

        Injectable class bindings of the parent chain are copied into this
        container, so their dependencies are looked up here first. Clearing the
        parent removes those copies.
        """
        with self._lock:
            if parent is not None and parent is self._parent:
                return self

            ancestor = parent
            while ancestor is not None:
                if ancestor is self:
                    msg = "A container cannot extend itself or one of its descendants"
                    raise ValueError(msg)
                ancestor = ancestor._parent  # noqa: SLF001

            self._detach_parent()
            if parent is None:
                return self

            self._parent = parent
            for member in parent._class_members_in_chain():  # noqa: SLF001
                self._extend_member(member)
            self._parent_subscription = parent.on_load_class(self._on_parent_load_class)
            logger.debug("Container %x extends %x", id(self), id(parent))
        return self

    def _detach_parent(self) -> None:
        if self._parent_subscription is not None:
            self._parent_subscription()
            self._parent_subscription = None
        if self._parent is None:
            return

        self._members = {name: m for name, m in self._members.items() if not m.is_extend}
        logger.debug("Container %x no longer extends %x", id(self), id(self._parent))
        self._parent = None

    def _class_members_in_chain(self) -> list[ContainerMember]:
        seen: set[str | ContainerLabel[Any]] = set()
        members: list[ContainerMember] = []
        container: Container | None = self
        while container is not None:
            for name, member in container._members.items():  # noqa: SLF001
                if member.kind is MemberKind.CLASS and name not in seen:
                    seen.add(name)
                    members.append(member)
            container = container._parent  # noqa: SLF001
        return members

    def _on_parent_load_class(self, clazz: type, member: ContainerMember) -> None:
        with self._lock:
            self._extend_member(member)

    def _extend_member(self, member: ContainerMember) -> ContainerMember:
        existing = self._members.get(member.name)
        if existing is not None:
            return existing

        # Same binding, own singleton cache: instances are built in this context
        copy = dataclasses.replace(member, value=None, cached=False, is_extend=True)
        self._members[member.name] = copy
        return copy

    # Binding table

    def bind_instance(self, instance: object) -> Container:
        return self.bind_value(type(instance), instance)

    def bind_value(self, label: Label, value: Any) -> Container:
        """Bind a value to a label.

        Raises `ForbiddenOverrideInjectableError` when the label is bound to an
        injectable class and `InvalidValueError` when the value is rejected.
        """
        key = label_key(label)
        with self._lock:
            self._check_override(key)
            self._validate(key, value)
            self._members[key] = ContainerMember(key, MemberKind.VALUE, value=value, cached=True)
        return self

    def bind_factory(self, label: Label, factory: Callable[..., Any], context: Any = None) -> Container:
        """Bind a factory called on every lookup with the arguments given to `get_value`."""
        key = label_key(label)
        with self._lock:
            self._check_override(key)
            self._members[key] = ContainerMember(key, MemberKind.FACTORY, producer=factory, context=context)
        return self

    def bind_getter(self, label: Label, getter: Callable[..., Any], context: Any = None) -> Container:
        """Bind a getter called on the first lookup only; its result is cached."""
        key = label_key(label)
        with self._lock:
            self._check_override(key)
            self._members[key] = ContainerMember(key, MemberKind.GETTER, producer=getter, context=context)
        return self

    def unbind(self, label: Label) -> Container:
        with self._lock:
            self._members.pop(label_key(label), None)
        return self

    def unbind_all(self) -> None:
        with self._lock:
            self._members.clear()

    def dispose(self) -> None:
        with self._lock:
            self.unbind_all()
            self._detach_parent()
            self._load_class_listeners.clear()
            self._resolution_stack.clear()
        logger.debug("Container %x disposed", id(self))

    def has_label(self, label: Label) -> bool:
        return label_key(label) in self._members

    def _check_override(self, key: str | ContainerLabel[Any]) -> None:
        member = self._members.get(key)
        if member is not None and member.kind is MemberKind.CLASS:
            msg = f"Label {key!r} is bound to an injectable class and cannot be overridden"
            raise ForbiddenOverrideInjectableError(msg)

    def _validate(self, key: str | ContainerLabel[Any], value: Any) -> None:
        if not self._value_validator(value):
            msg = f"Invalid value for label {key!r}: {value!r}"
            raise InvalidValueError(msg)

    # Loading

    def on_load_class(self, listener: LoadClassListener) -> Callable[[], None]:
        """Subscribe to class loads; returns a function removing the subscription."""
        self._load_class_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._load_class_listeners:
                self._load_class_listeners.remove(listener)

        return unsubscribe

    def load(self, *, module_name: str | None = None, override_parent: bool | None = None) -> None:
        """Bind every injectable class of the registry, optionally only those of one module.

        Raises `ContainerRepeatLoadError` when called twice.
        """
        if self._loaded:
            msg = "Container.load was already called on this container"
            raise ContainerRepeatLoadError(msg)
        self._loaded = True
        self.load_from_metadata(self.registry.all_metadata(), module_name=module_name, override_parent=override_parent)

    def load_from_class(
        self,
        classes: Iterable[type],
        *,
        module_name: str | None = None,
        override_parent: bool | None = None,
    ) -> None:
        metadata = [m for m in (self.registry.get(cls) for cls in classes) if m is not None]
        self.load_from_metadata(metadata, module_name=module_name, override_parent=override_parent)

    def load_from_metadata(
        self,
        metadata: Iterable[Metadata],
        *,
        module_name: str | None = None,
        override_parent: bool | None = None,
    ) -> None:
        with self._lock:
            created: list[ContainerMember] = []
            for item in metadata:
                if not item.injectable:
                    continue
                if module_name is not None and item.module_name != module_name:
                    continue

                existing = self._members.get(item.name)
                if existing is not None:
                    override = item.override_parent if override_parent is None else override_parent
                    if not existing.is_extend or not override:
                        logger.debug("Skipping %s, label already bound", item.name)
                        continue
                created.append(self._new_member(item))

            for member in created:
                if member.metadata is not None and member.metadata.create_immediately:
                    self._resolve_member(member, ())

    def _new_member(self, metadata: Metadata) -> ContainerMember:
        member = ContainerMember(metadata.name, MemberKind.CLASS, metadata=metadata)
        self._members[member.name] = member
        logger.debug("Loaded class %s", metadata.name)
        for listener in list(self._load_class_listeners):
            listener(metadata.clazz, member)
        return member

    # Resolution

    @overload
    def get_value(self, label: type[T], *args: Any) -> T: ...

    @overload
    def get_value(self, label: ContainerLabel[T], *args: Any) -> T: ...

    @overload
    def get_value(self, label: str, *args: Any) -> Any: ...

    def get_value(self, label: Label, *args: Any) -> Any:
        """Resolve the value bound to a label.

        `args` are passed to factories and to a getter's first call.
        Raises `NotExistLabelError` when neither this container nor a parent
        binds the label, and `DependencyCycleError` on circular constructor or
        field dependencies.
        """
        key = label_key(label)
        with self._lock:
            member = self._find_member(label, key)
            return self._resolve_member(member, args)

    def _find_member(self, label: Label, key: str | ContainerLabel[Any]) -> ContainerMember:
        member = self._members.get(key)
        if member is not None:
            return member

        if inspect.isclass(label):
            metadata = self.registry.get(label)
            if metadata is not None and metadata.injectable:
                return self._new_member(metadata)

        parent = self._parent
        while parent is not None:
            upstream = parent._members.get(key)  # noqa: SLF001
            if upstream is not None:
                if upstream.kind is MemberKind.CLASS:
                    return self._extend_member(upstream)
                return upstream
            parent = parent._parent  # noqa: SLF001

        raise NotExistLabelError(label)

    def _resolve_member(self, member: ContainerMember, args: tuple[Any, ...]) -> Any:
        if member.kind is MemberKind.VALUE:
            return member.value

        if member.kind is MemberKind.FACTORY:
            return self._produce(member, args)

        if member.kind is MemberKind.GETTER:
            if not member.cached:
                member.value = self._produce(member, args)
                member.cached = True
            return member.value

        return self._instantiate(member)

    def _produce(self, member: ContainerMember, args: tuple[Any, ...]) -> Any:
        producer = member.producer
        if member.context is not None:
            producer = functools.partial(producer, member.context)
        value = producer(*args)
        self._validate(member.name, value)
        return value

    def _instantiate(self, member: ContainerMember) -> Any:
        metadata = member.metadata
        if metadata.singleton and member.cached:
            return member.value

        if member.name in self._resolution_stack:
            raise DependencyCycleError([*self._resolution_stack, member.name])

        self._resolution_stack.append(member.name)
        try:
            args = self._get_method_parameters(metadata, metadata.find_method_parameter_types())
            instance = metadata.clazz(*args)
            for field_name, field_type in metadata.field_types.items():
                setattr(instance, field_name, self._get_field_value(metadata, field_name, field_type))
            if metadata.on_create is not None:
                metadata.on_create(instance)
        finally:
            self._resolution_stack.pop()

        if metadata.singleton:
            member.value = instance
            member.cached = True
        return instance

    def _get_method_parameters(self, metadata: Metadata, spec: ParameterSpec | None) -> list[Any]:
        if spec is None:
            return []

        values = []
        for index in range(len(spec)):
            getter = spec.getters.get(index)
            if getter is not None:
                values.append(getter(self))
                continue

            label = spec.type_at(index)
            if label is None:
                msg = f"Parameter {index} of {metadata.name} has no type label and no getter"
                raise InjectNotFoundTypeError(msg)
            values.append(self.get_value(label))
        return values

    def _get_field_value(self, metadata: Metadata, name: str, field_type: FieldType) -> Any:
        if field_type.getter is not None:
            return field_type.getter(self)
        if field_type.type is None:
            msg = f"Field {metadata.name}.{name} has no type label and no getter"
            raise InjectNotFoundTypeError(msg)
        return self.get_value(field_type.type)

    # Method calls

    async def call(self, instance: object, method_name: str) -> Any:
        """Call a registered method with injected arguments, awaiting hooks and result.

        Before hooks run in order and may mutate the argument list. After hooks
        run in order even when the method raises; a hook returning something
        other than `None` replaces the return value and handles the error.
        """
        metadata, spec = self._method_spec(instance, method_name)
        with self._lock:
            args = self._get_method_parameters(metadata, spec)

        for before in spec.before_call_methods:
            result = before(self, metadata, args)
            if inspect.isawaitable(result):
                await result

        return_value = None
        error: Exception | None = None
        try:
            return_value = getattr(instance, method_name)(*args)
            if inspect.isawaitable(return_value):
                return_value = await return_value
        except Exception as exc:  # noqa: BLE001
            error = exc

        handled = False
        for after in spec.after_call_methods:
            result = after(self, metadata, return_value, args, error)
            if inspect.isawaitable(result):
                result = await result
            if result is not None:
                return_value = result
                handled = True

        if error is not None and not handled:
            raise error
        return return_value

    def call_sync(self, instance: object, method_name: str) -> Any:
        """Synchronous `call`. Hooks and the method must not return awaitables."""
        metadata, spec = self._method_spec(instance, method_name)
        with self._lock:
            args = self._get_method_parameters(metadata, spec)

        for before in spec.before_call_methods:
            _ensure_not_awaitable(before(self, metadata, args), method_name)

        return_value = None
        error: Exception | None = None
        try:
            return_value = getattr(instance, method_name)(*args)
        except Exception as exc:  # noqa: BLE001
            error = exc
        else:
            _ensure_not_awaitable(return_value, method_name)

        handled = False
        for after in spec.after_call_methods:
            result = _ensure_not_awaitable(after(self, metadata, return_value, args, error), method_name)
            if result is not None:
                return_value = result
                handled = True

        if error is not None and not handled:
            raise error
        return return_value

    def _method_spec(self, instance: object, method_name: str) -> tuple[Metadata, ParameterSpec]:
        for clazz in type(instance).__mro__:
            metadata = self.registry.get(clazz)
            if metadata is None:
                continue
            spec = metadata.find_method_parameter_types(method_name)
            if spec is not None:
                return metadata, spec

        msg = f"Method {type(instance).__name__}.{method_name} is not registered for injection"
        raise MethodNotDecoratedInjectError(msg)


def _ensure_not_awaitable(value: Any, method_name: str) -> Any:
    if not inspect.isawaitable(value):
        return value

    if inspect.iscoroutine(value):
        value.close()
    msg = f"call_sync of {method_name!r} got an awaitable; use Container.call instead"
    raise TypeError(msg)
