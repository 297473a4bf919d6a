# Copyright Red Hat
#
# storediff/stores/_store.py - Store differ store provider interface
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Versioned store provider interface.

A ``StoreProvider`` opens a storage engine directory at one commit version
and returns a ``StoreSet``: the named sub-stores of that snapshot with their
root hashes and the ability to stream each store's key/value pairs in
ascending key order.
"""
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple
from abc import ABC, abstractmethod
from hashlib import sha256
from enum import Enum
import logging

from storediff import (
    STOREDIFF_SUBSYSTEM_STORES,
    StreamError,
    UnsupportedStoreError,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_stores(msg, *args, **kwargs):
    """A wrapper for stores subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_STORES}, **kwargs)


#: A single key/value record from an ordered store stream.
KeyValue = Tuple[bytes, bytes]


class StoreCapability(Enum):
    """
    Ordered iteration capability of one named store.
    """

    #: No ordered iteration (e.g. transient or memory-only stores)
    NONE = "none"
    #: Plain ascending key/value iteration
    GENERIC = "generic"
    #: Tree traversal order iteration (implies ``GENERIC``)
    STRUCTURAL = "structural"

    @property
    def can_iterate(self) -> bool:
        """
        ``True`` if this capability allows any ordered iteration.
        """
        return self != StoreCapability.NONE


def compute_store_hash(items: Iterable[KeyValue]) -> bytes:
    """
    Compute a SHA-256 root hash over length-prefixed key/value pairs taken
    in ascending key order.

    :param items: The store contents.
    :type items: ``Iterable[Tuple[bytes, bytes]]``
    :returns: The 32 byte digest.
    :rtype: ``bytes``
    """
    digest = sha256()
    for key, value in sorted(items):
        digest.update(len(key).to_bytes(4, "big"))
        digest.update(key)
        digest.update(len(value).to_bytes(4, "big"))
        digest.update(value)
    return digest.digest()


class OrderedKeyStream(ABC):
    """
    A restartable, closable stream of one store's key/value pairs in
    ascending byte-lexicographic key order.

    Each call to ``iter()`` starts a new pass from the first key. Keys are
    unique within a pass.
    """

    def __init__(self, name: str):
        """
        Initialise a new ``OrderedKeyStream``.

        :param name: The name of the store this stream reads.
        :type name: ``str``
        """
        self.name = name
        self.closed = False

    def __iter__(self) -> Iterator[KeyValue]:
        if self.closed:
            raise StreamError(f"Stream for store '{self.name}' is closed")
        return self._iter_items()

    def __enter__(self) -> "OrderedKeyStream":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @abstractmethod
    def _iter_items(self) -> Iterator[KeyValue]:
        """
        Return an iterator over a fresh pass of the store contents.
        """

    def restart(self) -> Iterator[KeyValue]:
        """
        Start a new pass over the stream from its first key.

        :returns: A new iterator positioned at the first key.
        :rtype: ``Iterator[Tuple[bytes, bytes]]``
        """
        return iter(self)

    def close(self):
        """
        Release any resources held by this stream. Further iteration
        raises ``StreamError``.
        """
        if self.closed:
            return
        self.closed = True
        _log_debug_stores("Closing stream for store '%s'", self.name)
        self._do_close()

    def _do_close(self):
        """Hook for subclasses holding open resources."""


class StoreSet(ABC):
    """
    The named sub-stores of one storage engine snapshot at one version.

    Capabilities are fixed when the ``StoreSet`` is opened and never
    re-probed during a comparison. A ``StoreSet`` is read-only and may be
    shared between threads as long as each thread opens its own streams.
    """

    def __init__(self, version: int):
        """
        Initialise a new ``StoreSet``.

        :param version: The commit version of this snapshot.
        :type version: ``int``
        """
        self.version = version

    def __enter__(self) -> "StoreSet":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @abstractmethod
    def store_names(self) -> Set[str]:
        """
        Return the names of all stores in this set.
        """

    @abstractmethod
    def hash(self, name: str) -> Optional[bytes]:
        """
        Return the root hash of store ``name`` or ``None`` if absent.
        """

    @abstractmethod
    def capability(self, name: str) -> StoreCapability:
        """
        Return the ordered iteration capability of store ``name``.
        """

    @abstractmethod
    def _open_stream(self, name: str, structural: bool) -> OrderedKeyStream:
        """
        Open a new stream over store ``name``. Called only after the
        capability check has passed.
        """

    def hashes(self) -> Dict[str, bytes]:
        """
        Return a mapping of store name to root hash for every store.

        :returns: Store name to hash mapping.
        :rtype: ``Dict[str, bytes]``
        """
        return {name: self.hash(name) for name in self.store_names()}

    def supports_structural_iteration(self, name: str) -> bool:
        """
        ``True`` if store ``name`` can be streamed in tree traversal order.
        """
        return self.capability(name) == StoreCapability.STRUCTURAL

    def ordered_stream(self, name: str) -> OrderedKeyStream:
        """
        Open a generic ordered key/value stream over store ``name``.

        :param name: The store to open.
        :type name: ``str``
        :returns: A new stream owned by the caller.
        :rtype: ``OrderedKeyStream``
        :raises UnsupportedStoreError: If the store cannot be iterated.
        """
        if not self.capability(name).can_iterate:
            raise UnsupportedStoreError(
                f"Store '{name}' at version {self.version} does not support "
                "ordered iteration"
            )
        return self._open_stream(name, structural=False)

    def structural_stream(self, name: str) -> OrderedKeyStream:
        """
        Open a tree-ordered key/value stream over store ``name``.

        :param name: The store to open.
        :type name: ``str``
        :returns: A new stream owned by the caller.
        :rtype: ``OrderedKeyStream``
        :raises UnsupportedStoreError: If the store has no tree structure.
        """
        if not self.supports_structural_iteration(name):
            raise UnsupportedStoreError(
                f"Store '{name}' at version {self.version} does not support "
                "structural iteration"
            )
        return self._open_stream(name, structural=True)

    def close(self):
        """
        Release resources held by this ``StoreSet``.
        """


class StoreProvider(ABC):
    """
    Opens storage engine directories as ``StoreSet`` objects.
    """

    @abstractmethod
    def open(self, directory: str, wanted_version: Optional[int] = None) -> StoreSet:
        """
        Open the storage engine at ``directory``.

        :param directory: Path to the storage engine data directory.
        :type directory: ``str``
        :param wanted_version: The commit version to open, or ``None`` for
                               the latest committed version.
        :type wanted_version: ``Optional[int]``
        :returns: The opened store set.
        :rtype: ``StoreSet``
        :raises StoreNotFoundError: If the directory or version is missing.
        :raises StoreCorruptError: If the directory cannot be read.
        """


__all__ = [
    "KeyValue",
    "OrderedKeyStream",
    "StoreCapability",
    "StoreProvider",
    "StoreSet",
    "compute_store_hash",
]
