# Copyright Red Hat
#
# storediff/stores/memory.py - Store differ in-memory stores
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
In-memory store sets, for programmatic use and testing.
"""
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, Union

from ._store import (
    KeyValue,
    OrderedKeyStream,
    StoreCapability,
    StoreSet,
    compute_store_hash,
)


class MemoryStore:
    """
    One named store held in memory.
    """

    def __init__(
        self,
        data: Union[Mapping[bytes, bytes], Iterable[KeyValue]],
        store_hash: Optional[bytes] = None,
        capability: StoreCapability = StoreCapability.STRUCTURAL,
    ):
        """
        Initialise a new ``MemoryStore``.

        :param data: The store contents as a mapping or key/value pairs.
        :param store_hash: An explicit root hash. Computed from ``data``
                           with ``compute_store_hash()`` if not given.
        :type store_hash: ``Optional[bytes]``
        :param capability: The iteration capability to advertise.
        :type capability: ``StoreCapability``
        """
        items = data.items() if isinstance(data, Mapping) else data
        self.data: Dict[bytes, bytes] = dict(items)
        self.hash: bytes = (
            store_hash
            if store_hash is not None
            else compute_store_hash(self.data.items())
        )
        self.capability = capability


class MemoryKeyStream(OrderedKeyStream):
    """
    An ``OrderedKeyStream`` over a ``MemoryStore``.
    """

    def __init__(self, name: str, store: MemoryStore):
        super().__init__(name)
        self._store = store

    def _iter_items(self) -> Iterator[KeyValue]:
        return iter(sorted(self._store.data.items()))


class MemoryStoreSet(StoreSet):
    """
    A ``StoreSet`` built from ``MemoryStore`` objects.
    """

    def __init__(self, version: int, stores: Mapping[str, MemoryStore]):
        super().__init__(version)
        self._stores: Dict[str, MemoryStore] = dict(stores)

    def __repr__(self):
        return f"MemoryStoreSet({self.version}, [{', '.join(sorted(self._stores))}])"

    def store_names(self) -> Set[str]:
        return set(self._stores)

    def hash(self, name: str) -> Optional[bytes]:
        store = self._stores.get(name)
        return store.hash if store else None

    def capability(self, name: str) -> StoreCapability:
        store = self._stores.get(name)
        return store.capability if store else StoreCapability.NONE

    def _open_stream(self, name: str, structural: bool) -> OrderedKeyStream:
        return MemoryKeyStream(name, self._stores[name])


__all__ = [
    "MemoryKeyStream",
    "MemoryStore",
    "MemoryStoreSet",
]
