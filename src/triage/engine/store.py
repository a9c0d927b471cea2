"""Arena-style record store keyed by string id."""
from collections.abc import Callable, Iterator
from operator import attrgetter
from typing import Generic, TypeVar

T = TypeVar("T")


class RecordStore(Generic[T]):
    """Dense list of records plus an id -> index map.

    Iteration follows first-insertion order. Putting a record whose id is
    already present replaces it in place.
    """

    def __init__(self, key: Callable[[T], str] = attrgetter("id")):
        self._key = key
        self._records: list[T] = []
        self._index: dict[str, int] = {}

    def put(self, record: T) -> T:
        """Insert or replace a record"""
        record_id = self._key(record)
        position = self._index.get(record_id)
        if position is None:
            self._index[record_id] = len(self._records)
            self._records.append(record)
        else:
            self._records[position] = record
        return record

    def get(self, record_id: str) -> T | None:
        position = self._index.get(record_id)
        if position is None:
            return None
        return self._records[position]

    def values(self) -> list[T]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()
        self._index.clear()

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._index

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)
