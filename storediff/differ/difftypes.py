# Copyright Red Hat
#
# storediff/differ/difftypes.py - Store differ diff types
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Store diff types
"""
from enum import Enum


class StoreStatus(Enum):
    """
    Enum for the root hash classification of one named store.
    """

    MATCH = "match"
    DIFFER = "differ"
    MISSING_IN_LEFT = "missing_in_left"
    MISSING_IN_RIGHT = "missing_in_right"


class KeyDiffKind(Enum):
    """
    Enum for different key difference types.
    """

    KEY_ONLY_LEFT = "key_only_left"
    KEY_ONLY_RIGHT = "key_only_right"
    VALUE_DIFFERS = "value_differs"

    def mirrored(self) -> "KeyDiffKind":
        """
        Return the kind seen from the opposite side of the comparison.
        """
        if self == KeyDiffKind.KEY_ONLY_LEFT:
            return KeyDiffKind.KEY_ONLY_RIGHT
        if self == KeyDiffKind.KEY_ONLY_RIGHT:
            return KeyDiffKind.KEY_ONLY_LEFT
        return self


class CompareStrategy(Enum):
    """
    Enum for the stream type used to compare a differing store.
    """

    TREE = "tree"
    KV = "kv"
    NONE = "none"
