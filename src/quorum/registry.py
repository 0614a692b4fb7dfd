"""Named registries mapping provider families to client classes."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from quorum.types import QuorumError

T = TypeVar("T")


class RegistryError(QuorumError):
    """Raised on duplicate registration or lookup of an unknown name."""


class Registry(Generic[T]):
    """A typed name -> item map with fail-fast duplicate detection.

    Usable directly (``registry.register("openai", Cls)``) or as a class
    decorator (``@registry.register("openai")``).

    Args:
        name: Registry name used in error messages.
    """

    def __init__(self, name: str = "registry") -> None:
        self._name = name
        self._items: dict[str, T] = {}

    def register(self, name: str, item: T | None = None) -> Any:
        """Register *item* under *name*, or return a decorator doing so.

        Raises:
            RegistryError: If *name* is already taken.
        """
        if item is not None:
            self._store(name, item)
            return item

        def decorator(obj: T) -> T:
            self._store(name, obj)
            return obj

        return decorator

    def _store(self, name: str, item: T) -> None:
        if name in self._items:
            raise RegistryError(f"'{name}' is already registered in {self._name}")
        self._items[name] = item

    def get(self, name: str) -> T:
        """Look up *name*.

        Raises:
            RegistryError: If *name* is not registered.
        """
        try:
            return self._items[name]
        except KeyError:
            raise RegistryError(
                f"'{name}' not found in {self._name} (available: {self.list_all()})"
            ) from None

    def find(self, name: str) -> T | None:
        """Look up *name*, returning ``None`` when absent."""
        return self._items.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._items

    def list_all(self) -> list[str]:
        """Registered names in insertion order."""
        return list(self._items)
