"""
Linked transaction id set.

Ledger entries keep weak references to the transactions that paid them.
The stored form is an ordered JSON list; in memory it behaves as a set with
an idempotent add, so a repeated commit never duplicates a link.
"""

import json
from typing import Any, Iterable, Iterator, List


class LinkedIdSet:
    """Insertion-ordered, duplicate-free collection of identifiers."""

    __slots__ = ("_ids",)

    def __init__(self, ids: Iterable[Any] = ()):
        self._ids = dict.fromkeys(str(i) for i in ids if i is not None and str(i))

    @classmethod
    def from_stored(cls, value: Any) -> "LinkedIdSet":
        """
        Parse the persisted column value.

        Accepts a list or a JSON-encoded list; anything else is treated as empty.
        """
        if isinstance(value, (list, tuple)):
            return cls(value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                return cls()
            if isinstance(parsed, list):
                return cls(parsed)
        return cls()

    def add(self, identifier: str) -> bool:
        """Add an id. Returns False when it was already present."""
        identifier = str(identifier)
        if identifier in self._ids:
            return False
        self._ids[identifier] = None
        return True

    def to_list(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, identifier: object) -> bool:
        return str(identifier) in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LinkedIdSet):
            return set(self._ids) == set(other._ids)
        return NotImplemented

    def __repr__(self) -> str:
        return f"LinkedIdSet({self.to_list()!r})"
