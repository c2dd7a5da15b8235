from __future__ import annotations

import inspect
from typing import Any, Generic, TypeVar


T = TypeVar("T")


class ContainerLabel(Generic[T]):
    """Opaque token used as a container label.

    Tokens are unique: two tokens created with the same name are different
    labels, and a token never matches the plain string of its name. The type
    parameter only helps static checkers infer what `get_value` returns.
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"ContainerLabel({self.name!r})"

    def __str__(self) -> str:
        return self.name


def container_label(name: str) -> ContainerLabel[Any]:
    return ContainerLabel(name)


def is_container_label(obj: object) -> bool:
    return isinstance(obj, ContainerLabel)


def label_key(label: Any) -> str | ContainerLabel[Any]:
    """Normalize a label: classes become their name, strings and tokens pass through."""
    if inspect.isclass(label):
        return label.__name__
    if isinstance(label, (str, ContainerLabel)):
        return label

    msg = f"Labels must be a string, a ContainerLabel or a class, got {type(label).__name__}"
    raise TypeError(msg)
