# Copyright Red Hat
#
# storediff/differ/report.py - Store differ comparison report
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Comparison report records and assembly.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Optional
from datetime import datetime
from math import floor
import logging
import json

from storediff import STOREDIFF_SUBSYSTEM_DIFFER, hexlify
from storediff.progress import TermControl

from .difftypes import CompareStrategy, KeyDiffKind, StoreStatus
from .options import DiffOptions

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_differ(msg, *args, **kwargs):
    """A wrapper for differ subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_DIFFER}, **kwargs)


#: Note recorded when a complete key walk found no difference
HASH_MISMATCH_ONLY_NOTE = (
    "keys match but hash differs (possible hashing or store versioning bug)"
)


@dataclass(frozen=True)
class KeyDiff:
    """
    One divergent key between the left and right store.
    """

    kind: KeyDiffKind
    key: bytes
    value_left: Optional[bytes] = None
    value_right: Optional[bytes] = None

    def __post_init__(self):
        if self.kind == KeyDiffKind.KEY_ONLY_LEFT and self.value_right is not None:
            raise ValueError("key_only_left diff cannot carry value_right")
        if self.kind == KeyDiffKind.KEY_ONLY_RIGHT and self.value_left is not None:
            raise ValueError("key_only_right diff cannot carry value_left")
        if self.kind == KeyDiffKind.VALUE_DIFFERS and (
            self.value_left is None or self.value_right is None
        ):
            raise ValueError("value_differs diff requires both values")

    def __str__(self) -> str:
        if self.kind == KeyDiffKind.KEY_ONLY_LEFT:
            return f"key only in left: {self.key.hex()} (value {self.value_left.hex()})"
        if self.kind == KeyDiffKind.KEY_ONLY_RIGHT:
            return f"key only in right: {self.key.hex()} (value {self.value_right.hex()})"
        return (
            f"value differs at key {self.key.hex()}:\n"
            f"      left:  {self.value_left.hex()}\n"
            f"      right: {self.value_right.hex()}"
        )

    def mirrored(self) -> "KeyDiff":
        """
        Return this diff as seen with the left and right sides swapped.
        """
        return KeyDiff(self.kind.mirrored(), self.key, self.value_right, self.value_left)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``KeyDiff`` into a dictionary suitable for encoding as
        JSON. Binary fields are rendered as lowercase hex.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "kind": self.kind.value,
            "key": self.key.hex(),
            "value_left": hexlify(self.value_left),
            "value_right": hexlify(self.value_right),
        }


@dataclass(frozen=True)
class ShapeDiff:
    """
    One differing position of the coarse, position-by-position shape diff.
    """

    index: int
    left_line: Optional[str] = None
    right_line: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"line {self.index}:\n"
            f"      left:  {self.left_line if self.left_line is not None else '<none>'}\n"
            f"      right: {self.right_line if self.right_line is not None else '<none>'}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``ShapeDiff`` into a JSON compatible dictionary.
        """
        return {
            "index": self.index,
            "left_line": self.left_line,
            "right_line": self.right_line,
        }


class StoreDiff:
    """
    Comparison result for one named store.
    """

    def __init__(
        self,
        name: str,
        status: StoreStatus,
        hash_left: Optional[bytes] = None,
        hash_right: Optional[bytes] = None,
    ):
        """
        Initialise a new ``StoreDiff`` object.

        :param name: The store name.
        :type name: ``str``
        :param status: The root hash classification of the store.
        :type status: ``StoreStatus``
        :param hash_left: The root hash on the left side, if present.
        :type hash_left: ``Optional[bytes]``
        :param hash_right: The root hash on the right side, if present.
        :type hash_right: ``Optional[bytes]``
        """
        self.name = name
        self.status = status
        self.hash_left = hash_left
        self.hash_right = hash_right
        self.key_diffs: List[KeyDiff] = []
        self.sample_keys: List[bytes] = []
        self.shape_diffs: List[ShapeDiff] = []
        self.strategy = CompareStrategy.NONE
        self.incomparable = False
        self.partial = False
        self.hash_mismatch_only = False
        self.note: Optional[str] = None

    def __repr__(self) -> str:
        return f"StoreDiff('{self.name}', {self.status})"

    def __str__(self) -> str:
        """
        Return a string representation of this ``StoreDiff`` object.

        :returns: A human readable representation of this ``StoreDiff``.
        :rtype: ``str``
        """
        nl = "\n"
        lines = [
            f"Store: {self.name}",
            f"  status: {self.status.value}",
            f"  hash_left: {hexlify(self.hash_left) or ''}",
            f"  hash_right: {hexlify(self.hash_right) or ''}",
        ]
        if self.status == StoreStatus.DIFFER:
            lines.append(f"  strategy: {self.strategy.value}")
            lines.append(f"  incomparable: {self.incomparable}")
            lines.append(f"  partial: {self.partial}")
            lines.append(f"  hash_mismatch_only: {self.hash_mismatch_only}")
        if self.key_diffs:
            lines.append(f"  key_diffs:{nl}{nl.join('    ' + str(d) for d in self.key_diffs)}")
        if self.sample_keys:
            lines.append(
                f"  sample_keys:{nl}{nl.join('    ' + k.hex() for k in self.sample_keys)}"
            )
        if self.shape_diffs:
            lines.append(
                f"  shape_diffs:{nl}{nl.join('    ' + str(s) for s in self.shape_diffs)}"
            )
        if self.note:
            lines.append(f"  note: {self.note}")
        return nl.join(lines)

    @property
    def is_match(self) -> bool:
        """
        ``True`` if both sides hold this store with equal root hashes.
        """
        return self.status == StoreStatus.MATCH

    @property
    def is_missing(self) -> bool:
        """
        ``True`` if this store is present on one side only.
        """
        return self.status in (StoreStatus.MISSING_IN_LEFT, StoreStatus.MISSING_IN_RIGHT)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``StoreDiff`` into a dictionary representation suitable
        for encoding as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        out = {
            "name": self.name,
            "status": self.status.value,
            "hash_left": hexlify(self.hash_left),
            "hash_right": hexlify(self.hash_right),
            "key_diffs": [diff.to_dict() for diff in self.key_diffs],
        }
        if self.status == StoreStatus.DIFFER:
            out["strategy"] = self.strategy.value
            out["incomparable"] = self.incomparable
            out["partial"] = self.partial
            out["hash_mismatch_only"] = self.hash_mismatch_only
        if self.is_missing:
            out["sample_keys"] = [key.hex() for key in self.sample_keys]
        if self.shape_diffs:
            out["shape_diffs"] = [shape.to_dict() for shape in self.shape_diffs]
        if self.note:
            out["note"] = self.note
        return out


@dataclass(frozen=True)
class ReportSummary:
    """
    Tallies of store classifications in a ``ComparisonReport``.
    """

    total: int = 0
    matching: int = 0
    differing: int = 0
    missing: int = 0

    @property
    def is_identical(self) -> bool:
        """
        ``True`` if no store differs or is missing on either side.
        """
        return self.differing == 0 and self.missing == 0

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this summary into a JSON compatible dictionary.
        """
        return {
            "total": self.total,
            "matching": self.matching,
            "differing": self.differing,
            "missing": self.missing,
            "is_identical": self.is_identical,
        }


class ComparisonReport:
    """Container for store set comparison results with formatting methods."""

    #: Constant for the names of the string report formats
    DIFF_FORMATS: ClassVar[List[str]] = [
        "summary",
        "short",
        "full",
        "names",
        "json",
    ]

    def __init__(
        self,
        diffs: Iterable[StoreDiff],
        version_left: int,
        version_right: int,
        summary: ReportSummary,
        options: Optional[DiffOptions] = None,
        timestamp: Optional[int] = None,
    ):
        self._diffs = tuple(diffs)
        self.version_left = version_left
        self.version_right = version_right
        self.summary_counts = summary
        self.options = options or DiffOptions()
        self.timestamp = (
            timestamp if timestamp is not None else floor(datetime.now().timestamp())
        )

    def __repr__(self) -> str:
        return (
            f"ComparisonReport([...], {self.version_left}, {self.version_right}, "
            f"{self.summary_counts!r})"
        )

    # List-like interface
    def __iter__(self) -> Iterator[StoreDiff]:
        return iter(self._diffs)

    def __len__(self):
        return len(self._diffs)

    def __getitem__(self, index: int) -> StoreDiff:
        return self._diffs[index]

    @property
    def diffs(self) -> List[StoreDiff]:
        """
        Return the per-store results sorted by store name.

        :rtype: ``List[StoreDiff]``
        """
        return list(self._diffs)

    @property
    def is_identical(self) -> bool:
        """
        ``True`` if the two store sets are identical.
        """
        return self.summary_counts.is_identical

    @property
    def differing(self) -> List[StoreDiff]:
        """
        Return stores present on both sides with differing hashes.
        """
        return [d for d in self._diffs if d.status == StoreStatus.DIFFER]

    @property
    def missing(self) -> List[StoreDiff]:
        """
        Return stores present on one side only.
        """
        return [d for d in self._diffs if d.is_missing]

    def get(self, name: str) -> Optional[StoreDiff]:
        """
        Return the ``StoreDiff`` for store ``name`` or ``None``.
        """
        for diff in self._diffs:
            if diff.name == name:
                return diff
        return None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this report into a dictionary representation suitable for
        encoding as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "version_left": self.version_left,
            "version_right": self.version_right,
            "summary": self.summary_counts.to_dict(),
            "diffs": [diff.to_dict() for diff in self._diffs],
        }

    # Output formats
    def json(self, pretty: bool = False) -> str:
        """
        Return a JSON representation of this report.

        :param pretty: Indent JSON to be human readable.
        :type pretty: ``bool``
        :returns: A JSON string.
        :rtype: ``str``
        """
        return json.dumps(self.to_dict(), indent=4 if pretty else None)

    def names(self) -> List[str]:
        """
        Return the names of stores that do not match.

        :returns: Store name list.
        :rtype: ``List[str]``
        """
        return [diff.name for diff in self._diffs if not diff.is_match]

    def full(self) -> str:
        """
        Return a string with full ``StoreDiff`` content for every store.

        :returns: String description of all stores.
        :rtype: ``str``
        """
        return "\n\n".join(str(diff) for diff in self._diffs)

    def short(
        self, color: str = "auto", term_control: Optional[TermControl] = None
    ) -> str:
        """
        Return a brief description of each store that does not match.

        :param color: A string to control color rendering: "auto", "always",
                      or "never".
        :type color: ``str``
        :param term_control: An optional ``TermControl`` that overrides
                             ``color`` if set.
        :type term_control: ``Optional[TermControl]``
        :returns: Brief description of the differences.
        :rtype: ``str``
        """
        tc = term_control or TermControl(color=color)
        out = []
        for diff in self._diffs:
            if diff.is_match:
                continue
            if diff.status == StoreStatus.MISSING_IN_RIGHT:
                out.append(f"Store {diff.name} {tc.RED}only in left{tc.NORMAL}")
            elif diff.status == StoreStatus.MISSING_IN_LEFT:
                out.append(f"Store {diff.name} {tc.GREEN}only in right{tc.NORMAL}")
            else:
                out.append(
                    f"Store {diff.name}: {tc.YELLOW}hashes differ{tc.NORMAL}\n"
                    f"  left:  {hexlify(diff.hash_left)}\n"
                    f"  right: {hexlify(diff.hash_right)}"
                )
                for key_diff in diff.key_diffs:
                    out.append(f"  {key_diff}")
                if diff.note:
                    out.append(f"  {tc.MAGENTA}{diff.note}{tc.NORMAL}")
        return "\n".join(out)

    def summary(
        self, color: str = "auto", term_control: Optional[TermControl] = None
    ) -> str:
        """
        Return a summary of this report.

        :param color: A string to control color rendering: "auto", "always",
                      or "never".
        :type color: ``str``
        :param term_control: An optional ``TermControl`` that overrides
                             ``color`` if set.
        :type term_control: ``Optional[TermControl]``
        :returns: A string summarizing this report.
        :rtype: ``str``
        """
        tc = term_control or TermControl(color=color)
        counts = self.summary_counts
        identical = (
            tc.GREEN + "yes" + tc.NORMAL
            if counts.is_identical
            else tc.RED + "no" + tc.NORMAL
        )
        return (
            f"Left version:      {self.version_left}\n"
            f"Right version:     {self.version_right}\n"
            f"Total stores:      {counts.total}\n"
            f"  Stores {tc.GREEN + 'matching: ' + tc.NORMAL} {counts.matching}\n"
            f"  Stores {tc.YELLOW + 'differing:' + tc.NORMAL} {counts.differing}\n"
            f"  Stores {tc.RED + 'missing:  ' + tc.NORMAL} {counts.missing}\n"
            f"Identical:         {identical}"
        )


class ReportAssembler:
    """
    Folds per-store results into a ``ComparisonReport``.
    """

    @staticmethod
    def summarize(diffs: Iterable[StoreDiff]) -> ReportSummary:
        """
        Tally the status values of ``diffs``.

        :param diffs: The per-store results.
        :type diffs: ``Iterable[StoreDiff]``
        :returns: The summary counts.
        :rtype: ``ReportSummary``
        """
        total = matching = differing = missing = 0
        for diff in diffs:
            total += 1
            if diff.status == StoreStatus.MATCH:
                matching += 1
            elif diff.status == StoreStatus.DIFFER:
                differing += 1
            else:
                missing += 1
        return ReportSummary(total, matching, differing, missing)

    def assemble(
        self,
        diffs: Iterable[StoreDiff],
        version_left: int,
        version_right: int,
        options: Optional[DiffOptions] = None,
    ) -> ComparisonReport:
        """
        Build a ``ComparisonReport`` from ``diffs``, one per store name in
        the union of both store sets. The diffs are ordered by store name
        regardless of the order in which they are supplied.

        :param diffs: The per-store results.
        :type diffs: ``Iterable[StoreDiff]``
        :param version_left: The left store set version.
        :type version_left: ``int``
        :param version_right: The right store set version.
        :type version_right: ``int``
        :param options: The options used for the comparison.
        :type options: ``Optional[DiffOptions]``
        :returns: The assembled report.
        :rtype: ``ComparisonReport``
        """
        ordered = sorted(diffs, key=lambda diff: diff.name)
        summary = self.summarize(ordered)
        _log_debug_differ(
            "Assembled report: total=%d matching=%d differing=%d missing=%d",
            summary.total,
            summary.matching,
            summary.differing,
            summary.missing,
        )
        return ComparisonReport(
            ordered, version_left, version_right, summary, options=options
        )


__all__ = [
    "HASH_MISMATCH_ONLY_NOTE",
    "ComparisonReport",
    "KeyDiff",
    "ReportAssembler",
    "ReportSummary",
    "ShapeDiff",
    "StoreDiff",
]
