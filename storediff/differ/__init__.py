# Copyright Red Hat
#
# storediff/differ/__init__.py - Store differ comparison engine
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Store set differencing engine.
"""
from .difftypes import CompareStrategy, KeyDiffKind, StoreStatus
from .merge import MergeDiffer
from .options import DiffOptions
from .report import (
    ComparisonReport,
    KeyDiff,
    ReportAssembler,
    ReportSummary,
    ShapeDiff,
    StoreDiff,
)
from .resolver import StoreDiffResolver, shape_diff
from .roothash import RootHashComparator
from .storediffer import CancelToken, StoreDiffer

__all__ = [
    "CancelToken",
    "CompareStrategy",
    "ComparisonReport",
    "DiffOptions",
    "KeyDiff",
    "KeyDiffKind",
    "MergeDiffer",
    "ReportAssembler",
    "ReportSummary",
    "RootHashComparator",
    "ShapeDiff",
    "StoreDiff",
    "StoreDiffResolver",
    "StoreDiffer",
    "StoreStatus",
    "shape_diff",
]
