"""Growable list with an element release hook."""

from __future__ import annotations

from typing import Any, Callable, Iterator, Optional


class ArrayList:
    """A list whose empty slots hold ``None``.

    ``free_fn`` is called on an element when it is overwritten by ``put``
    and on every remaining element when the list is released on leaving
    a ``with`` block.
    """

    def __init__(self, free_fn: Optional[Callable[[Any], None]] = None) -> None:
        self._free_fn = free_fn
        self._items: list[Any] = []

    def _release(self, item: Any) -> None:
        if item is not None and self._free_fn is not None:
            self._free_fn(item)

    def get(self, index: int) -> Any:
        """Element at ``index``, or ``None`` past the end."""
        if index < 0:
            raise IndexError(f"negative index {index}")
        if index >= len(self._items):
            return None
        return self._items[index]

    def put(self, index: int, data: Any) -> None:
        """Store ``data`` at ``index``, growing the list as needed."""
        if index < 0:
            raise IndexError(f"negative index {index}")
        if index >= len(self._items):
            self._items.extend([None] * (index + 1 - len(self._items)))
        else:
            self._release(self._items[index])
        self._items[index] = data

    def add(self, data: Any) -> None:
        """Append ``data`` after the last element."""
        self.put(len(self._items), data)

    def sort(self, key: Callable[[Any], Any]) -> None:
        """Sort the elements in place by ``key``."""
        self._items.sort(key=key)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items)

    def __enter__(self) -> "ArrayList":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        for item in self._items:
            self._release(item)
        self._items.clear()