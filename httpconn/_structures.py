from __future__ import annotations

import typing
from collections.abc import (
    ItemsView,
    Iterator,
    KeysView,
    Mapping,
    MutableMapping,
    ValuesView,
)

V = typing.TypeVar("V")


def _lookup_key(key: object) -> str | None:
    if key is None:
        return None
    if not isinstance(key, str):
        raise KeyError(key)
    return key.lower()


class CaseInsensitiveMap(MutableMapping[typing.Optional[str], V]):
    """
    An insertion ordered mapping whose string keys are compared without
    regard to case.

    Keys that differ only by case share a single slot. Assigning to an
    existing slot replaces the value and takes over the casing of the new
    key, while the slot keeps the position of its first insertion::

        >>> headers = CaseInsensitiveMap()
        >>> headers["Content-Type"] = "text/plain"
        >>> headers["content-type"] = "text/html"
        >>> list(headers.items())
        [('content-type', 'text/html')]

    ``None`` is a legal key and addresses its own slot. Querying with a key
    that is not a string behaves as if the key were absent.

    ``keys()``, ``values()`` and ``items()`` are live views of the map, and
    removing entries through a view removes them from the map.
    """

    _store: dict[str | None, tuple[str | None, V]]

    def __init__(
        self,
        data: Mapping[str | None, V] | typing.Iterable[tuple[str | None, V]] | None = None,
        **kwargs: V,
    ) -> None:
        self._store = {}
        if data is not None:
            self.update(data)
        self.update(kwargs)

    def __setitem__(self, key: str | None, value: V) -> None:
        if key is not None and not isinstance(key, str):
            raise TypeError(f"Keys must be str or None, got {type(key).__name__}")
        self._store[None if key is None else key.lower()] = (key, value)

    def __getitem__(self, key: object) -> V:
        return self._store[_lookup_key(key)][1]

    def __delitem__(self, key: object) -> None:
        del self._store[_lookup_key(key)]

    def __iter__(self) -> Iterator[str | None]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def keys(self) -> _KeysView:
        return _KeysView(self)

    def values(self) -> _ValuesView[V]:
        return _ValuesView(self)

    def items(self) -> _ItemsView[V]:
        return _ItemsView(self)

    def put(self, key: str | None, value: V) -> V | None:
        """
        Store ``value`` and return the value it replaced, if any.
        """
        previous = self.get(key)
        self[key] = value
        return previous

    def compute_if_absent(
        self, key: str | None, factory: typing.Callable[[str | None], V]
    ) -> V:
        """
        Return the value stored under ``key``, first storing
        ``factory(key)`` if the slot is empty.
        """
        try:
            return self[key]
        except KeyError:
            value = factory(key)
            self[key] = value
            return value

    def lower_items(self) -> Iterator[tuple[str | None, V]]:
        """Like items(), but with all lowercase keys."""
        return ((lower, pair[1]) for lower, pair in self._store.items())

    def copy(self) -> CaseInsensitiveMap[V]:
        return CaseInsensitiveMap(self._store.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        if not isinstance(other, CaseInsensitiveMap):
            try:
                other = CaseInsensitiveMap(other)
            except TypeError:
                return False
        return dict(self.lower_items()) == dict(other.lower_items())

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({dict(self.items())!r})"


class _KeysView(KeysView[typing.Optional[str]]):
    _mapping: CaseInsensitiveMap[typing.Any]

    def discard(self, key: object) -> None:
        self._mapping.pop(key, None)

    def remove(self, key: object) -> None:
        del self._mapping[key]

    def clear(self) -> None:
        self._mapping.clear()


class _ValuesView(ValuesView[V]):
    _mapping: CaseInsensitiveMap[V]

    def remove(self, value: object) -> None:
        for key, candidate in self._mapping.items():
            if candidate is value or candidate == value:
                del self._mapping[key]
                return
        raise ValueError(value)

    def clear(self) -> None:
        self._mapping.clear()


class _ItemsView(ItemsView[typing.Optional[str], V]):
    _mapping: CaseInsensitiveMap[V]

    def discard(self, item: tuple[object, object]) -> None:
        if item in self:
            del self._mapping[item[0]]

    def remove(self, item: tuple[object, object]) -> None:
        if item not in self:
            raise KeyError(item)
        del self._mapping[item[0]]

    def clear(self) -> None:
        self._mapping.clear()
