# Copyright Red Hat
#
# storediff/differ/merge.py - Store differ ordered stream merge
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Bounded merge-join over two ordered key/value streams.
"""
from typing import Iterable, Iterator, List, Optional
import logging

from storediff import STOREDIFF_SUBSYSTEM_DIFFER
from storediff.stores import KeyValue

from .difftypes import KeyDiffKind
from .report import KeyDiff

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_differ(msg, *args, **kwargs):
    """A wrapper for differ subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_DIFFER}, **kwargs)


def _next(it: Iterator[KeyValue]) -> Optional[KeyValue]:
    return next(it, None)


class MergeDiffer:
    """
    Walks two ascending key/value streams in lock-step and reports the keys
    at which they diverge.

    Both inputs must yield strictly ascending keys with no duplicates. This
    is a precondition of the caller and is not checked here.
    """

    def iter_diffs(
        self, left: Iterable[KeyValue], right: Iterable[KeyValue], limit: int
    ) -> Iterator[KeyDiff]:
        """
        Generate at most ``limit`` ``KeyDiff`` records in ascending key order.

        Exceptions raised by either input propagate to the caller after any
        already generated diffs have been consumed. Iterators opened by this
        method are closed on every exit path.

        :param left: The left hand key/value stream.
        :type left: ``Iterable[Tuple[bytes, bytes]]``
        :param right: The right hand key/value stream.
        :type right: ``Iterable[Tuple[bytes, bytes]]``
        :param limit: The maximum number of diffs to generate.
        :type limit: ``int``
        :returns: A generator of ``KeyDiff`` objects.
        :rtype: ``Iterator[KeyDiff]``
        """
        if limit <= 0:
            return

        left_it = right_it = None
        emitted = 0
        try:
            left_it = iter(left)
            right_it = iter(right)
            lhead = _next(left_it)
            rhead = _next(right_it)
            while emitted < limit and (lhead is not None or rhead is not None):
                if lhead is None:
                    diff = KeyDiff(KeyDiffKind.KEY_ONLY_RIGHT, rhead[0], None, rhead[1])
                    rhead = _next(right_it)
                elif rhead is None:
                    diff = KeyDiff(KeyDiffKind.KEY_ONLY_LEFT, lhead[0], lhead[1], None)
                    lhead = _next(left_it)
                elif lhead[0] < rhead[0]:
                    diff = KeyDiff(KeyDiffKind.KEY_ONLY_LEFT, lhead[0], lhead[1], None)
                    lhead = _next(left_it)
                elif lhead[0] > rhead[0]:
                    diff = KeyDiff(KeyDiffKind.KEY_ONLY_RIGHT, rhead[0], None, rhead[1])
                    rhead = _next(right_it)
                else:
                    diff = None
                    if lhead[1] != rhead[1]:
                        diff = KeyDiff(
                            KeyDiffKind.VALUE_DIFFERS, lhead[0], lhead[1], rhead[1]
                        )
                    lhead = _next(left_it)
                    rhead = _next(right_it)
                if diff is not None:
                    emitted += 1
                    yield diff
        finally:
            for it in (left_it, right_it):
                close = getattr(it, "close", None)
                if close is not None:
                    close()
            _log_debug_differ("Merge finished after %d diffs (limit=%d)", emitted, limit)

    def diff(
        self, left: Iterable[KeyValue], right: Iterable[KeyValue], limit: int
    ) -> List[KeyDiff]:
        """
        Return the list of at most ``limit`` diffs between ``left`` and
        ``right``. See ``iter_diffs()``.

        :rtype: ``List[KeyDiff]``
        """
        return list(self.iter_diffs(left, right, limit))


__all__ = [
    "MergeDiffer",
]
