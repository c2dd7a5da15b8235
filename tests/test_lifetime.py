import unittest

from liteinject import Container, Registry


class TestLifetimeControl(unittest.TestCase):
    registry: Registry
    cont: Container

    def setUp(self):
        self.registry = Registry()
        self.cont = Container(self.registry)

    def test_singleton_class_returns_same_instance(self):
        @self.registry.injectable(singleton=True)
        class A: ...

        a1 = self.cont.get_value(A)
        a2 = self.cont.get_value(A)
        assert a2 is a1, "singleton should return the cached instance"

    def test_non_singleton_class_returns_new_instances(self):
        @self.registry.injectable
        class B: ...

        @self.registry.injectable
        class A:
            def __init__(self, b: B):
                self.b = b

        self.cont.load()
        a1 = self.cont.get_value(A)
        a2 = self.cont.get_value(A)
        assert a2 is not a1, "non-singleton should return new instances"
        assert type(a1) is type(a2)
        assert isinstance(a1.b, B)
        assert a1.b is not a2.b

    def test_singleton_is_cached_per_container(self):
        @self.registry.injectable(singleton=True)
        class A: ...

        other = Container(self.registry)
        assert self.cont.get_value(A) is not other.get_value(A)

    def test_bound_value_is_always_the_same_object(self):
        class A: ...

        inst = A()
        self.cont.bind_value("a", inst)
        assert self.cont.get_value("a") is inst
        assert self.cont.get_value("a") is inst
