# Copyright Red Hat
#
# storediff/differ/resolver.py - Store differ per-store resolution
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Per-store resolution of root hash mismatches into key level detail.
"""
from itertools import islice, zip_longest
from typing import Callable, Iterable, Iterator, List, Optional
import logging

from storediff import (
    STOREDIFF_SUBSYSTEM_DIFFER,
    StreamError,
    UnsupportedStoreError,
)
from storediff.stores import KeyValue, OrderedKeyStream, StoreSet

from .difftypes import CompareStrategy, StoreStatus
from .merge import MergeDiffer
from .options import DiffOptions
from .report import HASH_MISMATCH_ONLY_NOTE, ShapeDiff, StoreDiff

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_differ(msg, *args, **kwargs):
    """A wrapper for differ subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_DIFFER}, **kwargs)


StreamOpener = Callable[[str], OrderedKeyStream]


def _shape_lines(items: Iterable[KeyValue]) -> Iterator[str]:
    for key, value in items:
        yield f"{key.hex()}={value.hex()}"


def shape_diff(
    left: Iterable[KeyValue], right: Iterable[KeyValue], limit: int
) -> List[ShapeDiff]:
    """
    Coarse shape diff: render both sides as ``hexkey=hexvalue`` lines and
    compare them position by position.

    Lines are not aligned. A single inserted or deleted line makes every
    following position differ even if the remaining content is identical.

    :param left: The left hand key/value stream.
    :type left: ``Iterable[Tuple[bytes, bytes]]``
    :param right: The right hand key/value stream.
    :type right: ``Iterable[Tuple[bytes, bytes]]``
    :param limit: The maximum number of differing positions to record.
    :type limit: ``int``
    :returns: The differing positions in ascending order.
    :rtype: ``List[ShapeDiff]``
    """
    out = []
    if limit <= 0:
        return out
    pairs = zip_longest(_shape_lines(left), _shape_lines(right))
    for index, (left_line, right_line) in enumerate(pairs):
        if left_line != right_line:
            out.append(ShapeDiff(index, left_line, right_line))
            if len(out) >= limit:
                break
    return out


class StoreDiffResolver:
    """
    Populates key level detail for classified ``StoreDiff`` objects.
    """

    def __init__(self, options: Optional[DiffOptions] = None):
        """
        Initialise a new ``StoreDiffResolver``.

        :param options: Options controlling limits and diagnostics.
        :type options: ``Optional[DiffOptions]``
        """
        self.options = options or DiffOptions()
        self.merger = MergeDiffer()

    @staticmethod
    def select_strategy(
        name: str, set_left: StoreSet, set_right: StoreSet
    ) -> CompareStrategy:
        """
        Select the stream type used to compare store ``name``.

        :returns: ``TREE`` when both sides support structural iteration,
                  ``KV`` when both support ordered iteration, otherwise
                  ``NONE``.
        :rtype: ``CompareStrategy``
        """
        if set_left.supports_structural_iteration(
            name
        ) and set_right.supports_structural_iteration(name):
            return CompareStrategy.TREE
        if (
            set_left.capability(name).can_iterate
            and set_right.capability(name).can_iterate
        ):
            return CompareStrategy.KV
        return CompareStrategy.NONE

    def resolve(self, diff: StoreDiff, set_left: StoreSet, set_right: StoreSet) -> StoreDiff:
        """
        Resolve one classified store.

        Stores that differ are merge compared. Stores that are missing on
        one side get a small sample of keys from the side that has them.
        Matching stores are returned unchanged.

        :param diff: The store classified by ``RootHashComparator``.
        :type diff: ``StoreDiff``
        :param set_left: The left hand store set.
        :type set_left: ``StoreSet``
        :param set_right: The right hand store set.
        :type set_right: ``StoreSet``
        :returns: ``diff``, populated in place.
        :rtype: ``StoreDiff``
        """
        if diff.status == StoreStatus.DIFFER:
            self._resolve_differ(diff, set_left, set_right)
        elif diff.status == StoreStatus.MISSING_IN_RIGHT:
            self._sample(diff, set_left, "left")
        elif diff.status == StoreStatus.MISSING_IN_LEFT:
            self._sample(diff, set_right, "right")
        return diff

    def _mark_incomparable(self, diff: StoreDiff, reason: str):
        diff.incomparable = True
        diff.strategy = CompareStrategy.NONE
        diff.note = f"incomparable store: {reason}"
        _log_warn("Store '%s' is incomparable: %s", diff.name, reason)

    def _resolve_differ(self, diff: StoreDiff, set_left: StoreSet, set_right: StoreSet):
        name = diff.name
        strategy = self.select_strategy(name, set_left, set_right)
        diff.strategy = strategy
        if strategy == CompareStrategy.NONE:
            missing = [
                side
                for side, store_set in (("left", set_left), ("right", set_right))
                if not store_set.capability(name).can_iterate
            ]
            self._mark_incomparable(
                diff, f"no ordered iteration on {' and '.join(missing)} side"
            )
            return

        def opener(store_set: StoreSet) -> StreamOpener:
            if strategy == CompareStrategy.TREE:
                return store_set.structural_stream
            return store_set.ordered_stream

        open_left = opener(set_left)
        open_right = opener(set_right)
        limit = self.options.max_key_diffs

        _log_debug_differ("Comparing store '%s' using %s strategy", name, strategy.value)
        try:
            with open_left(name) as left, open_right(name) as right:
                try:
                    for key_diff in self.merger.iter_diffs(left, right, limit):
                        diff.key_diffs.append(key_diff)
                except StreamError as err:
                    diff.partial = True
                    diff.note = f"comparison stopped early: {err}"
                    _log_warn(
                        "Partial comparison of store '%s' after %d diffs: %s",
                        name,
                        len(diff.key_diffs),
                        err,
                    )
                    return

                if diff.key_diffs or limit <= 0:
                    return

                diff.hash_mismatch_only = True
                diff.note = HASH_MISMATCH_ONLY_NOTE
                _log_warn("Store '%s': %s", name, HASH_MISMATCH_ONLY_NOTE)

                if self.options.shape_diff:
                    self._shape_diff(diff, left, right, limit)
        except UnsupportedStoreError as err:
            diff.key_diffs.clear()
            self._mark_incomparable(diff, str(err))

    def _shape_diff(
        self,
        diff: StoreDiff,
        left: OrderedKeyStream,
        right: OrderedKeyStream,
        limit: int,
    ):
        try:
            diff.shape_diffs = shape_diff(left.restart(), right.restart(), limit)
        except StreamError as err:
            diff.note = f"{HASH_MISMATCH_ONLY_NOTE}; shape diff failed: {err}"
            _log_warn("Shape diff of store '%s' failed: %s", diff.name, err)
            return
        if not diff.shape_diffs:
            diff.note = f"{HASH_MISMATCH_ONLY_NOTE}; coarse shape matches"
        _log_debug_differ(
            "Shape diff of store '%s' found %d differing lines",
            diff.name,
            len(diff.shape_diffs),
        )

    def _sample(self, diff: StoreDiff, store_set: StoreSet, side: str):
        count = self.options.sample_keys
        if count <= 0:
            return
        name = diff.name
        if not store_set.capability(name).can_iterate:
            diff.note = f"store on {side} side cannot be iterated; no key sample"
            _log_debug_differ("No sample for store '%s': %s", name, diff.note)
            return
        try:
            with store_set.ordered_stream(name) as stream:
                diff.sample_keys = [key for key, _value in islice(stream, count)]
        except (StreamError, UnsupportedStoreError) as err:
            diff.note = f"key sample failed: {err}"
            _log_warn("Cannot sample keys from store '%s': %s", name, err)


__all__ = [
    "StoreDiffResolver",
    "shape_diff",
]
