from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence


class InjectError(Exception):
    """Base class for every error raised by liteinject."""


class InvalidValueError(InjectError, ValueError):
    """A bound or produced value was rejected by the container's value validator."""


class ForbiddenOverrideInjectableError(InjectError):
    """A label backed by an injectable class cannot be rebound to a plain value."""


class NotExistLabelError(InjectError, KeyError):
    def __init__(self, label: object) -> None:
        self.label = label
        super().__init__(f"No binding found for label: {label!r}")

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class DependencyCycleError(InjectError):
    def __init__(self, path: Sequence[object]) -> None:
        self.path = list(path)
        chain = " -> ".join(str(label) for label in self.path)
        super().__init__(f"Dependency cycle detected: {chain}")


class ContainerRepeatLoadError(InjectError):
    """`Container.load` was called more than once on the same container."""


class MethodNotDecoratedInjectError(InjectError):
    """`Container.call` target has no registered parameter metadata."""


class InjectNotFoundTypeError(InjectError, TypeError):
    """A parameter or field has no resolvable type label and no custom getter."""
