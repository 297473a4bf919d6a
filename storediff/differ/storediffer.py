# Copyright Red Hat
#
# storediff/differ/storediffer.py - Store differ top-level interface
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top-level store set comparison interface.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional
import threading
import logging
import time

from storediff import StoreDiffCancelledError
from storediff.progress import ProgressFactory, TermControl
from storediff.stores import DumpDirProvider, StoreProvider, StoreSet

from .options import DiffOptions
from .report import ComparisonReport, ReportAssembler, StoreDiff
from .resolver import StoreDiffResolver
from .roothash import RootHashComparator

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class CancelToken:
    """
    Cancellation flag with an optional deadline, checked between store level
    units of work.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialise a new ``CancelToken``.

        :param timeout: Seconds from now until the token expires, or
                        ``None`` for no deadline.
        :type timeout: ``Optional[float]``
        """
        self._event = threading.Event()
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self):
        """
        Request cancellation.
        """
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """
        ``True`` if ``cancel()`` has been called.
        """
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        """
        ``True`` if the deadline has passed.
        """
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self):
        """
        Raise ``StoreDiffCancelledError`` if cancelled or expired.
        """
        if self.cancelled:
            raise StoreDiffCancelledError("Comparison cancelled")
        if self.expired:
            raise StoreDiffCancelledError(
                f"Comparison timed out after {self.timeout} seconds"
            )


class StoreDiffer:
    """
    Top-level interface for comparing two store sets.
    """

    def __init__(
        self,
        options: Optional[DiffOptions] = None,
        provider: Optional[StoreProvider] = None,
        color: str = "auto",
        term_control: Optional[TermControl] = None,
    ):
        """
        Initialise a new ``StoreDiffer``.

        :param options: Options to control this ``StoreDiffer`` instance.
        :type options: ``Optional[DiffOptions]``
        :param provider: The provider used by ``compare_dirs()``. Defaults to
                         ``DumpDirProvider``.
        :type provider: ``Optional[StoreProvider]``
        :param color: A string to control color rendering: "auto", "always",
                      or "never".
        :type color: ``str``
        :param term_control: An optional ``TermControl`` instance to use for
                             progress output. The supplied instance overrides
                             any ``color`` argument if set.
        :type term_control: ``Optional[TermControl]``
        """
        self.options: DiffOptions = options or DiffOptions()
        self.provider: StoreProvider = provider or DumpDirProvider()
        self.comparator = RootHashComparator()
        self.resolver = StoreDiffResolver(self.options)
        self.assembler = ReportAssembler()
        self._term_control = term_control or TermControl(color=color)

    def _resolve_one(
        self,
        token: CancelToken,
        diff: StoreDiff,
        set_left: StoreSet,
        set_right: StoreSet,
    ) -> StoreDiff:
        token.check()
        return self.resolver.resolve(diff, set_left, set_right)

    def _resolve_sequential(self, token, pending, set_left, set_right, progress):
        for done, diff in enumerate(pending, 1):
            self._resolve_one(token, diff, set_left, set_right)
            progress.progress(done, diff.name)

    def _resolve_concurrent(self, token, pending, set_left, set_right, progress):
        workers = min(self.options.jobs, len(pending))
        _log_debug("Resolving %d stores with %d workers", len(pending), workers)
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="storediff"
        )
        try:
            futures = {
                executor.submit(self._resolve_one, token, diff, set_left, set_right): diff
                for diff in pending
            }
            for done, future in enumerate(as_completed(futures), 1):
                future.result()
                progress.progress(done, futures[future].name)
        except BaseException:
            token.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

    def compare(
        self,
        set_left: StoreSet,
        set_right: StoreSet,
        cancel: Optional[CancelToken] = None,
    ) -> ComparisonReport:
        """
        Compare two opened store sets and return a ``ComparisonReport``.

        :param set_left: The left hand store set.
        :type set_left: ``StoreSet``
        :param set_right: The right hand store set.
        :type set_right: ``StoreSet``
        :param cancel: An optional cancellation token. If unset a token with
                       the ``DiffOptions.timeout`` deadline is used.
        :type cancel: ``Optional[CancelToken]``
        :returns: The comparison report.
        :rtype: ``ComparisonReport``
        :raises StoreDiffCancelledError: If the comparison was cancelled or
                                         timed out.
        """
        token = cancel or CancelToken(self.options.timeout)
        token.check()

        diffs: List[StoreDiff] = self.comparator.compare(
            set_left.hashes(), set_right.hashes()
        )
        pending = [diff for diff in diffs if not diff.is_match]
        _log_debug(
            "Comparing %s and %s: %d stores, %d need resolution",
            repr(set_left),
            repr(set_right),
            len(diffs),
            len(pending),
        )

        if pending:
            progress = ProgressFactory.get_progress(
                "Comparing stores",
                quiet=self.options.quiet,
                term_control=self._term_control,
            )
            progress.start(len(pending))
            try:
                if self.options.jobs == 1 or len(pending) == 1:
                    self._resolve_sequential(
                        token, pending, set_left, set_right, progress
                    )
                else:
                    self._resolve_concurrent(
                        token, pending, set_left, set_right, progress
                    )
            except BaseException as err:
                progress.cancel(f"Comparison failed: {err}")
                raise
            progress.end(f"Resolved {len(pending)} stores")

        report = self.assembler.assemble(
            diffs, set_left.version, set_right.version, options=self.options
        )
        _log_info(
            "Compared versions %d/%d: %d stores, %d differing, %d missing",
            set_left.version,
            set_right.version,
            report.summary_counts.total,
            report.summary_counts.differing,
            report.summary_counts.missing,
        )
        return report

    def compare_dirs(
        self,
        left_dir: str,
        right_dir: str,
        cancel: Optional[CancelToken] = None,
    ) -> ComparisonReport:
        """
        Open two storage engine directories with the configured provider and
        compare them. Store sets are closed on every exit path.

        :param left_dir: The left hand data directory.
        :type left_dir: ``str``
        :param right_dir: The right hand data directory.
        :type right_dir: ``str``
        :param cancel: An optional cancellation token.
        :type cancel: ``Optional[CancelToken]``
        :returns: The comparison report.
        :rtype: ``ComparisonReport``
        :raises StoreOpenError: If either directory cannot be opened.
        """
        with self.provider.open(left_dir, self.options.left_version) as set_left:
            with self.provider.open(right_dir, self.options.right_version) as set_right:
                return self.compare(set_left, set_right, cancel=cancel)


__all__ = [
    "CancelToken",
    "StoreDiffer",
]
