# Copyright Red Hat
#
# storediff/stores/__init__.py - Store differ store providers
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Versioned store provider interface and implementations.
"""
from ._store import (
    KeyValue,
    OrderedKeyStream,
    StoreCapability,
    StoreProvider,
    StoreSet,
    compute_store_hash,
)
from .dumpdir import DumpDirProvider, DumpDirStoreSet, write_dump
from .memory import MemoryStore, MemoryStoreSet

__all__ = [
    "DumpDirProvider",
    "DumpDirStoreSet",
    "KeyValue",
    "MemoryStore",
    "MemoryStoreSet",
    "OrderedKeyStream",
    "StoreCapability",
    "StoreProvider",
    "StoreSet",
    "compute_store_hash",
    "write_dump",
]
