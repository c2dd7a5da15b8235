import unittest
from unittest.mock import MagicMock

import pytest

from liteinject import (
    Container,
    ForbiddenOverrideInjectableError,
    InvalidValueError,
    NotExistLabelError,
    Registry,
    container_label,
    is_container_label,
)


def test_get_value_unbound_string_label_raises():
    c = Container()
    with pytest.raises(NotExistLabelError):
        c.get_value("unknown-label")


def test_not_exist_label_error_is_a_key_error():
    c = Container()
    with pytest.raises(KeyError) as ctx:
        c.get_value("unknown-label")
    assert "unknown-label" in str(ctx.value)


def test_bind_value_returns_value():
    c = Container()
    c.bind_value("port", 8080)
    assert c.get_value("port") == 8080


def test_bind_value_none_raises():
    c = Container()
    with pytest.raises(InvalidValueError):
        c.bind_value("port", None)
    assert not c.has_label("port")


def test_bind_value_accepts_falsy_values():
    c = Container()
    c.bind_value("zero", 0).bind_value("empty", "")
    assert c.get_value("zero") == 0
    assert c.get_value("empty") == ""


def test_custom_value_validator():
    c = Container(value_validator=lambda v: isinstance(v, int))
    c.bind_value("port", 8080)
    with pytest.raises(InvalidValueError):
        c.bind_value("host", "localhost")


def test_bind_instance_uses_class_name_as_label():
    c = Container()

    class Config: ...

    cfg = Config()
    c.bind_instance(cfg)
    assert c.get_value(Config) is cfg
    assert c.get_value("Config") is cfg


def test_bind_factory_is_called_on_every_lookup_with_args():
    c = Container()
    factory = MagicMock(side_effect=lambda a, b: a + b)

    c.bind_factory("sum", factory)

    assert c.get_value("sum", 1, 2) == 3
    assert c.get_value("sum", 3, 4) == 7
    assert factory.call_count == 2


def test_bind_factory_context_is_passed_first():
    c = Container()

    class Settings:
        base = 10

        def add(self, x):
            return self.base + x

    c.bind_factory("plus_base", Settings.add, Settings())
    assert c.get_value("plus_base", 5) == 15


def test_bind_factory_returning_none_raises():
    c = Container()
    c.bind_factory("nothing", lambda: None)
    with pytest.raises(InvalidValueError):
        c.get_value("nothing")


def test_bind_getter_is_called_once_and_ignores_later_args():
    c = Container()
    getter = MagicMock(side_effect=lambda x: [x])

    c.bind_getter("list", getter)

    first = c.get_value("list", 1)
    second = c.get_value("list", 2)
    assert first is second
    assert first == [1]
    getter.assert_called_once_with(1)


def test_container_label_token():
    c = Container()
    port = container_label("port")

    c.bind_value(port, 8080)

    assert is_container_label(port)
    assert not is_container_label("port")
    assert c.get_value(port) == 8080
    assert c.has_label(port)
    assert not c.has_label("port")
    # tokens with the same name are distinct labels
    with pytest.raises(NotExistLabelError):
        c.get_value(container_label("port"))


def test_invalid_label_type_raises_type_error():
    c = Container()
    with pytest.raises(TypeError):
        c.bind_value(42, "x")


def test_unbind_and_unbind_all():
    c = Container()
    c.bind_value("a", 1).bind_value("b", 2).bind_value("c", 3)

    c.unbind("a")
    assert not c.has_label("a")
    assert c.has_label("b")

    c.unbind_all()
    assert not c.has_label("b")
    assert not c.has_label("c")


def test_bind_value_replaces_plain_value():
    c = Container()
    c.bind_value("a", 1)
    c.bind_value("a", 2)
    assert c.get_value("a") == 2


class TestOverrideProtection(unittest.TestCase):
    registry: Registry
    cont: Container

    def setUp(self):
        self.registry = Registry()

        @self.registry.injectable
        class Service: ...

        self.service_cls = Service
        self.cont = Container(self.registry)
        self.cont.load()

    def test_bind_value_on_injectable_label_raises(self):
        with pytest.raises(ForbiddenOverrideInjectableError):
            self.cont.bind_value(self.service_cls, object())

    def test_bind_factory_and_getter_on_injectable_label_raise(self):
        with pytest.raises(ForbiddenOverrideInjectableError):
            self.cont.bind_factory("Service", object)
        with pytest.raises(ForbiddenOverrideInjectableError):
            self.cont.bind_getter("Service", object)

    def test_bind_value_after_unbind_succeeds(self):
        replacement = object()
        self.cont.unbind(self.service_cls)
        self.cont.bind_value(self.service_cls, replacement)
        assert self.cont.get_value(self.service_cls) is replacement


def test_end_to_end_car_shares_singleton_engine():
    registry = Registry()

    @registry.injectable(singleton=True)
    class Engine: ...

    @registry.injectable
    class Car:
        def __init__(self, engine: Engine):
            self.engine = engine

    c = Container(registry)
    c.load()

    car = c.get_value(Car)
    assert isinstance(car, Car)
    assert car.engine is c.get_value(Engine)


def test_get_value_creates_member_on_demand_for_injectable_class():
    registry = Registry()

    @registry.injectable
    class Engine: ...

    c = Container(registry)
    assert not c.has_label(Engine)

    assert isinstance(c.get_value(Engine), Engine)
    assert c.has_label(Engine)


def test_get_value_of_non_injectable_class_raises():
    registry = Registry()

    class Engine: ...

    registry.get_or_create(Engine)
    c = Container(registry)

    with pytest.raises(NotExistLabelError):
        c.get_value(Engine)


def test_constructor_params_from_values_factories_and_getters():
    registry = Registry()

    class Car:
        def __init__(self, engine, plate, owner):
            self.engine = engine
            self.plate = plate
            self.owner = owner

    registry.register(Car, paramtypes=["engine", "plate"], param_getters={2: lambda cont: cont.get_value("name")})

    c = Container(registry)
    c.bind_value("engine", "v8").bind_factory("plate", lambda: "AB-123").bind_value("name", "alice")

    car = c.get_value(Car)
    assert car.engine == "v8"
    assert car.plate == "AB-123"
    assert car.owner == "alice"


def test_custom_getter_receives_container():
    registry = Registry()
    received = []

    class Car:
        def __init__(self, engine):
            self.engine = engine

    def getter(cont):
        received.append(cont)
        return "v8"

    registry.register(Car, param_getters=[getter])
    c = Container(registry)

    assert c.get_value(Car).engine == "v8"
    assert received == [c]


def test_fields_are_injected_after_construction():
    registry = Registry()
    seen_in_init = []

    @registry.injectable(singleton=True)
    class Engine: ...

    @registry.injectable
    class Car:
        engine: Engine = registry.field()
        plate = registry.field("plate")
        owner = registry.field(getter=lambda cont: "alice")

        def __init__(self):
            seen_in_init.append(hasattr(self, "engine"))

    c = Container(registry)
    c.load()
    c.bind_value("plate", "AB-123")

    car = c.get_value(Car)
    assert seen_in_init == [False]
    assert car.engine is c.get_value(Engine)
    assert car.plate == "AB-123"
    assert car.owner == "alice"


def test_on_create_is_called_with_fields_injected():
    registry = Registry()
    created = []

    def on_create(instance):
        created.append((instance, instance.plate))

    @registry.injectable(on_create=on_create)
    class Car:
        plate = registry.field("plate")

    c = Container(registry)
    c.bind_value("plate", "AB-123")

    car = c.get_value(Car)
    assert created == [(car, "AB-123")]


def test_missing_dependency_raises_not_exist_label_error():
    registry = Registry()

    @registry.injectable
    class Car:
        def __init__(self, engine: "engine"):  # noqa: F821
            self.engine = engine

    c = Container(registry)
    with pytest.raises(NotExistLabelError):
        c.get_value(Car)
