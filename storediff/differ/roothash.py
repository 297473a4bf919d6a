# Copyright Red Hat
#
# storediff/differ/roothash.py - Store differ root hash classification
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Root hash classification of named stores.
"""
from typing import List, Mapping, Optional
import logging

from storediff import STOREDIFF_SUBSYSTEM_DIFFER, hexlify

from .difftypes import StoreStatus
from .report import StoreDiff

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_differ(msg, *args, **kwargs):
    """A wrapper for differ subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_DIFFER}, **kwargs)


def classify(hash_left: Optional[bytes], hash_right: Optional[bytes]) -> StoreStatus:
    """
    Return the ``StoreStatus`` determined by a pair of optional root hashes.

    :param hash_left: The left hand hash or ``None`` if the store is absent.
    :type hash_left: ``Optional[bytes]``
    :param hash_right: The right hand hash or ``None`` if the store is absent.
    :type hash_right: ``Optional[bytes]``
    :returns: The store status.
    :rtype: ``StoreStatus``
    """
    if hash_left is None and hash_right is None:
        raise ValueError("A store must be present on at least one side")
    if hash_right is None:
        return StoreStatus.MISSING_IN_RIGHT
    if hash_left is None:
        return StoreStatus.MISSING_IN_LEFT
    if bytes(hash_left) == bytes(hash_right):
        return StoreStatus.MATCH
    return StoreStatus.DIFFER


class RootHashComparator:
    """
    Classifies each named store by comparing two name to hash mappings.
    """

    def compare(
        self, hashes_left: Mapping[str, bytes], hashes_right: Mapping[str, bytes]
    ) -> List[StoreDiff]:
        """
        Produce one ``StoreDiff`` for every name in the union of
        ``hashes_left`` and ``hashes_right``, sorted ascending by name.

        :param hashes_left: Left hand store name to root hash mapping.
        :type hashes_left: ``Mapping[str, bytes]``
        :param hashes_right: Right hand store name to root hash mapping.
        :type hashes_right: ``Mapping[str, bytes]``
        :returns: The classified stores without key level detail.
        :rtype: ``List[StoreDiff]``
        """
        diffs = []
        for name in sorted(set(hashes_left) | set(hashes_right)):
            hash_left = hashes_left.get(name)
            hash_right = hashes_right.get(name)
            status = classify(hash_left, hash_right)
            if status != StoreStatus.MATCH:
                _log_debug_differ(
                    "Store '%s' classified %s (left=%s right=%s)",
                    name,
                    status.value,
                    hexlify(hash_left),
                    hexlify(hash_right),
                )
            diffs.append(StoreDiff(name, status, hash_left, hash_right))
        return diffs


__all__ = [
    "RootHashComparator",
    "classify",
]
