# Copyright Red Hat
#
# tests/differ/test_resolver.py - StoreDiffResolver tests.
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest

from storediff.differ.difftypes import CompareStrategy, KeyDiffKind, StoreStatus
from storediff.differ.options import DiffOptions
from storediff.differ.report import HASH_MISMATCH_ONLY_NOTE, ShapeDiff, StoreDiff
from storediff.differ.resolver import StoreDiffResolver, shape_diff
from storediff.differ.roothash import RootHashComparator
from storediff.stores import MemoryStore, StoreCapability

from ._util import FailingStoreSet, kv, make_set


def _classified(set_left, set_right, name):
    for diff in RootHashComparator().compare(set_left.hashes(), set_right.hashes()):
        if diff.name == name:
            return diff
    raise KeyError(name)


class TestShapeDiff(unittest.TestCase):
    def test_identical(self):
        items = kv([("a", "1"), ("b", "2")])
        self.assertEqual(shape_diff(items, list(items), 10), [])

    def test_positional_not_aligned(self):
        """Test one inserted line shifts every later position."""
        left = kv([("b", "2"), ("c", "3"), ("d", "4")])
        right = kv([("a", "1"), ("b", "2"), ("c", "3"), ("d", "4")])
        diffs = shape_diff(left, right, 10)
        self.assertEqual([d.index for d in diffs], [0, 1, 2, 3])
        self.assertEqual(diffs[0], ShapeDiff(0, "62=32", "61=31"))
        self.assertEqual(diffs[3], ShapeDiff(3, None, "64=34"))

    def test_limit(self):
        left = kv([("a", "1"), ("b", "2"), ("c", "3")])
        right = kv([("a", "9"), ("b", "9"), ("c", "9")])
        self.assertEqual(len(shape_diff(left, right, 2)), 2)
        self.assertEqual(shape_diff(left, right, 0), [])


class TestStoreDiffResolver(unittest.TestCase):
    def setUp(self):
        self.resolver = StoreDiffResolver(DiffOptions(max_key_diffs=10))

    def test_tree_strategy(self):
        set_left = make_set(1, {"bank": {"a": "1", "b": "2", "c": "3"}})
        set_right = make_set(1, {"bank": {"b": "2", "c": "9", "d": "4"}})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual(diff.status, StoreStatus.DIFFER)
        self.assertEqual(diff.strategy, CompareStrategy.TREE)
        self.assertEqual(
            [(d.kind, d.key) for d in diff.key_diffs],
            [
                (KeyDiffKind.KEY_ONLY_LEFT, b"a"),
                (KeyDiffKind.VALUE_DIFFERS, b"c"),
                (KeyDiffKind.KEY_ONLY_RIGHT, b"d"),
            ],
        )
        self.assertFalse(diff.partial)
        self.assertFalse(diff.incomparable)
        self.assertFalse(diff.hash_mismatch_only)

    def test_kv_strategy(self):
        """Test a generic-only side selects the kv strategy."""
        set_left = make_set(1, {"bank": {"a": "1"}}, caps={"bank": StoreCapability.GENERIC})
        set_right = make_set(1, {"bank": {"a": "2"}})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual(diff.strategy, CompareStrategy.KV)
        self.assertEqual(len(diff.key_diffs), 1)

    def test_select_strategy(self):
        caps = {
            "t": StoreCapability.STRUCTURAL,
            "g": StoreCapability.GENERIC,
            "n": StoreCapability.NONE,
        }
        set_left = make_set(1, {"t": {}, "g": {}, "n": {}}, caps=caps)
        set_right = make_set(1, {"t": {}, "g": {}, "n": {}})
        select = StoreDiffResolver.select_strategy
        self.assertEqual(select("t", set_left, set_right), CompareStrategy.TREE)
        self.assertEqual(select("g", set_left, set_right), CompareStrategy.KV)
        self.assertEqual(select("n", set_left, set_right), CompareStrategy.NONE)

    def test_incomparable(self):
        set_left = make_set(1, {"mem": {"a": "1"}})
        set_right = make_set(1, {"mem": {"a": "2"}}, caps={"mem": StoreCapability.NONE})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "mem"), set_left, set_right
        )
        self.assertEqual(diff.status, StoreStatus.DIFFER)
        self.assertTrue(diff.incomparable)
        self.assertEqual(diff.key_diffs, [])
        self.assertEqual(diff.strategy, CompareStrategy.NONE)
        self.assertIn("right side", diff.note)

    def test_partial_on_stream_error(self):
        """Test a StreamError keeps diffs found so far and sets partial."""
        set_left = FailingStoreSet(
            1,
            {"bank": MemoryStore(dict(kv([("a", "1"), ("b", "2"), ("c", "3")])))},
            failing={"bank"},
            fail_after=2,
        )
        set_right = make_set(1, {"bank": {"x": "1"}})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertTrue(diff.partial)
        self.assertEqual([d.key for d in diff.key_diffs], [b"a"])
        self.assertIn("stopped early", diff.note)
        self.assertTrue(all(s.closed for s in set_left.streams))

    def test_streams_closed(self):
        set_left = FailingStoreSet(1, {"bank": MemoryStore({b"a": b"1"})})
        set_right = FailingStoreSet(1, {"bank": MemoryStore({b"a": b"2"})})
        self.resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual(len(set_left.streams), 1)
        self.assertTrue(set_left.streams[0].closed)
        self.assertTrue(set_right.streams[0].closed)

    def test_hash_mismatch_only(self):
        """Test equal contents with unequal hashes are flagged."""
        data = {"bank": {"a": "1", "b": "2"}}
        set_left = make_set(1, data, hashes={"bank": b"\x01"})
        set_right = make_set(1, data, hashes={"bank": b"\x02"})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual(diff.key_diffs, [])
        self.assertTrue(diff.hash_mismatch_only)
        self.assertTrue(diff.note.startswith(HASH_MISMATCH_ONLY_NOTE))
        self.assertIn("coarse shape matches", diff.note)
        self.assertEqual(diff.shape_diffs, [])

    def test_hash_mismatch_only_without_shape_diff(self):
        resolver = StoreDiffResolver(DiffOptions(shape_diff=False))
        data = {"bank": {"a": "1"}}
        set_left = make_set(1, data, hashes={"bank": b"\x01"})
        set_right = make_set(1, data, hashes={"bank": b"\x02"})
        diff = resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertTrue(diff.hash_mismatch_only)
        self.assertEqual(diff.note, HASH_MISMATCH_ONLY_NOTE)

    def test_zero_limit_not_flagged(self):
        resolver = StoreDiffResolver(DiffOptions(max_key_diffs=0))
        set_left = make_set(1, {"bank": {"a": "1"}})
        set_right = make_set(1, {"bank": {"a": "2"}})
        diff = resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual(diff.key_diffs, [])
        self.assertFalse(diff.hash_mismatch_only)
        self.assertIsNone(diff.note)

    def test_limit(self):
        resolver = StoreDiffResolver(DiffOptions(max_key_diffs=2))
        set_left = make_set(1, {"bank": {k: "1" for k in "abcdef"}})
        set_right = make_set(1, {"bank": {}})
        diff = resolver.resolve(
            _classified(set_left, set_right, "bank"), set_left, set_right
        )
        self.assertEqual([d.key for d in diff.key_diffs], [b"a", b"b"])

    def test_missing_in_right_sample(self):
        set_left = make_set(1, {"gov": {"d": "4", "a": "1", "c": "3", "b": "2"}})
        set_right = make_set(1, {})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "gov"), set_left, set_right
        )
        self.assertEqual(diff.status, StoreStatus.MISSING_IN_RIGHT)
        self.assertEqual(diff.sample_keys, [b"a", b"b", b"c"])
        self.assertEqual(diff.key_diffs, [])

    def test_missing_in_left_sample(self):
        resolver = StoreDiffResolver(DiffOptions(sample_keys=1))
        set_left = make_set(1, {})
        set_right = make_set(1, {"gov": {"z": "1", "y": "2"}})
        diff = resolver.resolve(
            _classified(set_left, set_right, "gov"), set_left, set_right
        )
        self.assertEqual(diff.status, StoreStatus.MISSING_IN_LEFT)
        self.assertEqual(diff.sample_keys, [b"y"])

    def test_missing_sample_disabled(self):
        resolver = StoreDiffResolver(DiffOptions(sample_keys=0))
        set_left = make_set(1, {"gov": {"a": "1"}})
        set_right = make_set(1, {})
        diff = resolver.resolve(
            _classified(set_left, set_right, "gov"), set_left, set_right
        )
        self.assertEqual(diff.sample_keys, [])

    def test_missing_not_iterable(self):
        set_left = make_set(1, {"mem": {"a": "1"}}, caps={"mem": StoreCapability.NONE})
        set_right = make_set(1, {})
        diff = self.resolver.resolve(
            _classified(set_left, set_right, "mem"), set_left, set_right
        )
        self.assertEqual(diff.sample_keys, [])
        self.assertIn("cannot be iterated", diff.note)

    def test_match_untouched(self):
        set_left = make_set(1, {"bank": {"a": "1"}})
        set_right = make_set(1, {"bank": {"a": "1"}})
        original = _classified(set_left, set_right, "bank")
        diff = self.resolver.resolve(original, set_left, set_right)
        self.assertIs(diff, original)
        self.assertEqual(diff.strategy, CompareStrategy.NONE)
        self.assertEqual(diff.key_diffs, [])

    def test_resolve_returns_same_object(self):
        diff = StoreDiff("x", StoreStatus.MISSING_IN_RIGHT, b"\x01", None)
        set_left = make_set(1, {"x": {"k": "v"}})
        self.assertIs(self.resolver.resolve(diff, set_left, make_set(1, {})), diff)
