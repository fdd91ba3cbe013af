"""Storage of items keyed by sequential ids assigned to remote span ids."""

from __future__ import annotations

import weakref
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .fields import Visibility

T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")

_ID_MODULUS = 2**64


@dataclass(frozen=True, order=True)
class Id:
    """A sequential id assigned locally, distinct from the remote span id."""

    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass
class Ids:
    """Maps remote span ids to sequential ids, starting at 1."""

    next_id: int = 1
    mapping: dict[int, Id] = field(default_factory=dict)

    def id_for(self, span_id: int) -> Id:
        """Return the id for ``span_id``, assigning a new one if needed."""
        existing = self.mapping.get(span_id)
        if existing is not None:
            return existing
        new_id = Id(self.next_id)
        self.mapping[span_id] = new_id
        self.next_id = (self.next_id + 1) % _ID_MODULUS
        return new_id


class Store(Generic[T]):
    """Holds items under their sequential ids and tracks newly added ones."""

    def __init__(self) -> None:
        self.ids = Ids()
        self._items: dict[Id, T] = {}
        self._new_items: list[tuple[Id, weakref.ref]] = []

    def __len__(self) -> int:
        return len(self._items)

    def get(self, id: Id) -> T | None:
        return self._items.get(id)

    def get_by_span(self, span_id: int) -> T | None:
        id = self.ids.mapping.get(span_id)
        if id is None:
            return None
        return self.get(id)

    def insert_with(
        self,
        visibility: Visibility,
        items: Iterable[U],
        factory: Callable[[Ids, U], tuple[Id, T] | None],
    ) -> None:
        """Build items with ``factory`` and insert those it does not reject.

        When the items are visible, previously recorded new items are
        forgotten first.
        """
        if visibility is Visibility.SHOW:
            self._new_items.clear()
        for raw in items:
            built = factory(self.ids, raw)
            if built is None:
                continue
            id, item = built
            self._items[id] = item
            self._new_items.append((id, weakref.ref(item)))

    def updated(
        self, update: Mapping[int, V] | Iterable[tuple[int, V]]
    ) -> Iterator[tuple[V, T]]:
        """Yield ``(update, item)`` for each update whose span id is known."""
        pairs = update.items() if isinstance(update, Mapping) else update
        for span_id, value in pairs:
            id = self.ids.mapping.get(span_id)
            if id is None:
                continue
            item = self._items.get(id)
            if item is None:
                continue
            yield value, item

    def retain(self, predicate: Callable[[Id, T], bool]) -> None:
        """Keep only the items for which ``predicate(id, item)`` is true."""
        self._items = {id: item for id, item in self._items.items() if predicate(id, item)}
        self._new_items = [
            (id, ref)
            for id, ref in self._new_items
            if ref() is not None and self._items.get(id) is ref()
        ]

    def take_new_items(self) -> list[weakref.ref]:
        """Return weak references to items added since the last call."""
        taken = [ref for _, ref in self._new_items]
        self._new_items.clear()
        return taken

    def values(self) -> Iterator[T]:
        return iter(self._items.values())

    def items(self) -> Iterator[tuple[Id, T]]:
        return iter(self._items.items())

    def __repr__(self) -> str:
        return f"Store(items={self._items!r}, ids={self.ids!r})"