# Copyright Red Hat
#
# tests/test_stores.py - Store provider tests
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import shutil
import json
import os

from storediff import (
    StoreCorruptError,
    StoreNotFoundError,
    StoreOpenError,
    StreamError,
    UnsupportedStoreError,
)
from storediff.stores import (
    DumpDirProvider,
    MemoryStore,
    MemoryStoreSet,
    StoreCapability,
    compute_store_hash,
    write_dump,
)
from storediff.stores.dumpdir import MANIFEST_NAME

ITEMS = [(b"\x02", b"two"), (b"\x01", b"one"), (b"\x03", b"three")]


class TestComputeStoreHash(unittest.TestCase):
    def test_order_independent(self):
        self.assertEqual(compute_store_hash(ITEMS), compute_store_hash(sorted(ITEMS)))

    def test_length_prefixed(self):
        """Test moving bytes between key and value changes the hash."""
        self.assertNotEqual(
            compute_store_hash([(b"ab", b"c")]), compute_store_hash([(b"a", b"bc")])
        )

    def test_digest_size(self):
        self.assertEqual(len(compute_store_hash([])), 32)


class TestMemoryStoreSet(unittest.TestCase):
    def setUp(self):
        self.store_set = MemoryStoreSet(
            3,
            {
                "bank": MemoryStore(ITEMS),
                "params": MemoryStore({b"k": b"v"}, capability=StoreCapability.GENERIC),
                "mem": MemoryStore({}, store_hash=b"\x00", capability=StoreCapability.NONE),
            },
        )

    def test_names_and_hashes(self):
        self.assertEqual(self.store_set.store_names(), {"bank", "params", "mem"})
        self.assertEqual(self.store_set.hash("bank"), compute_store_hash(ITEMS))
        self.assertEqual(self.store_set.hash("mem"), b"\x00")
        self.assertIsNone(self.store_set.hash("nope"))
        self.assertEqual(set(self.store_set.hashes()), {"bank", "params", "mem"})

    def test_capabilities(self):
        self.assertTrue(self.store_set.supports_structural_iteration("bank"))
        self.assertFalse(self.store_set.supports_structural_iteration("params"))
        self.assertEqual(self.store_set.capability("nope"), StoreCapability.NONE)
        self.assertFalse(StoreCapability.NONE.can_iterate)
        self.assertTrue(StoreCapability.GENERIC.can_iterate)

    def test_ordered_stream(self):
        with self.store_set.ordered_stream("bank") as stream:
            self.assertEqual(list(stream), sorted(ITEMS))
            # Restartable
            self.assertEqual(list(stream.restart()), sorted(ITEMS))

    def test_unsupported(self):
        with self.assertRaises(UnsupportedStoreError):
            self.store_set.ordered_stream("mem")
        with self.assertRaises(UnsupportedStoreError):
            self.store_set.structural_stream("params")
        self.store_set.structural_stream("bank").close()

    def test_closed_stream(self):
        stream = self.store_set.ordered_stream("bank")
        stream.close()
        self.assertTrue(stream.closed)
        with self.assertRaises(StreamError):
            iter(stream)
        # Closing twice is harmless
        stream.close()


class TestDumpDir(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="storediff_test_")
        self.provider = DumpDirProvider()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def _write(self, compress="zstd"):
        write_dump(
            self.tmpdir,
            5,
            {"bank": ITEMS, "params": [(b"k", b"v")], "mem": None},
            hashes={"mem": b"\xee"},
            kinds={"params": "kv", "mem": "transient"},
            compress=compress,
        )

    def test_round_trip_compressions(self):
        """Test data files read back for each supported compression."""
        for compress in ("zstd", "xz", None):
            with self.subTest(compress=compress):
                self._write(compress)
                with self.provider.open(self.tmpdir) as store_set:
                    self.assertEqual(store_set.version, 5)
                    with store_set.ordered_stream("bank") as stream:
                        self.assertEqual(list(stream), sorted(ITEMS))

    def test_manifest(self):
        self._write()
        with self.provider.open(self.tmpdir, 5) as store_set:
            self.assertEqual(store_set.store_names(), {"bank", "params", "mem"})
            self.assertEqual(store_set.hash("bank"), compute_store_hash(ITEMS))
            self.assertEqual(store_set.hash("mem"), b"\xee")
            self.assertEqual(store_set.capability("bank"), StoreCapability.STRUCTURAL)
            self.assertEqual(store_set.capability("params"), StoreCapability.GENERIC)
            self.assertEqual(store_set.capability("mem"), StoreCapability.NONE)
            self.assertEqual(store_set.kind("params"), "kv")

    def test_versions(self):
        self._write()
        write_dump(self.tmpdir, 6, {"bank": []}, latest=False)
        self.assertEqual(self.provider.versions(self.tmpdir), {5, 6})
        self.assertEqual(self.provider.open(self.tmpdir).version, 5)
        self.assertEqual(self.provider.open(self.tmpdir, 6).store_names(), {"bank"})

    def test_version_not_found(self):
        self._write()
        with self.assertRaises(StoreNotFoundError):
            self.provider.open(self.tmpdir, 4)

    def test_missing_directory(self):
        with self.assertRaises(StoreOpenError):
            self.provider.open(os.path.join(self.tmpdir, "nope"))

    def test_missing_manifest(self):
        with self.assertRaises(StoreNotFoundError):
            self.provider.open(self.tmpdir)

    def test_corrupt_manifest(self):
        with open(os.path.join(self.tmpdir, MANIFEST_NAME), "w", encoding="utf8") as fp:
            fp.write("{not json")
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def _write_manifest(self, manifest):
        manifest = dict(manifest, format=1)
        with open(os.path.join(self.tmpdir, MANIFEST_NAME), "w", encoding="utf8") as fp:
            json.dump(manifest, fp)

    def test_malformed_latest_version(self):
        self._write_manifest({"latest": "x", "versions": {"x": {}}})
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def test_malformed_version_key(self):
        self._write_manifest({"latest": 1, "versions": {"one": {}}})
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)
        with self.assertRaises(StoreCorruptError):
            self.provider.versions(self.tmpdir)

    def test_malformed_store_table(self):
        self._write_manifest({"latest": 1, "versions": {"1": []}})
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def test_latest_as_string(self):
        self._write_manifest({"latest": "2", "versions": {"2": {}}})
        with self.provider.open(self.tmpdir) as store_set:
            self.assertEqual(store_set.version, 2)
            self.assertEqual(store_set.store_names(), set())

    def test_data_path_absolute(self):
        """Test a data file outside the dump directory is rejected."""
        outside = tempfile.mkdtemp(prefix="storediff_outside_")
        self.addCleanup(shutil.rmtree, outside)
        target = os.path.join(outside, "secret.kv")
        with open(target, "w", encoding="ascii") as fp:
            fp.write("01\t02\n")
        entry = {"hash": "00", "kind": "kv", "data": target}
        self._write_manifest({"latest": 1, "versions": {"1": {"s": entry}}})
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def test_data_path_parent(self):
        outside = tempfile.mkdtemp(prefix="storediff_outside_")
        self.addCleanup(shutil.rmtree, outside)
        with open(os.path.join(outside, "secret.kv"), "w", encoding="ascii") as fp:
            fp.write("01\t02\n")
        relative = os.path.relpath(os.path.join(outside, "secret.kv"), self.tmpdir)
        entry = {"hash": "00", "kind": "kv", "data": relative}
        self._write_manifest({"latest": 1, "versions": {"1": {"s": entry}}})
        with self.assertRaises(StoreOpenError):
            self.provider.open(self.tmpdir)

    def test_data_path_symlink_escape(self):
        outside = tempfile.mkdtemp(prefix="storediff_outside_")
        self.addCleanup(shutil.rmtree, outside)
        with open(os.path.join(outside, "secret.kv"), "w", encoding="ascii") as fp:
            fp.write("01\t02\n")
        os.symlink(os.path.join(outside, "secret.kv"), os.path.join(self.tmpdir, "s.kv"))
        entry = {"hash": "00", "kind": "kv", "data": "s.kv"}
        self._write_manifest({"latest": 1, "versions": {"1": {"s": entry}}})
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def test_unsupported_format(self):
        with open(os.path.join(self.tmpdir, MANIFEST_NAME), "w", encoding="utf8") as fp:
            json.dump({"format": 99, "versions": {}}, fp)
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def test_missing_data_file(self):
        self._write()
        with self.provider.open(self.tmpdir) as store_set:
            path = store_set._stores["bank"].data_path
        os.unlink(path)
        with self.assertRaises(StoreCorruptError):
            self.provider.open(self.tmpdir)

    def _write_plain(self, lines):
        write_dump(self.tmpdir, 1, {"bank": [(b"\x00", b"\x00")]}, compress=None)
        with self.provider.open(self.tmpdir) as store_set:
            path = store_set._stores["bank"].data_path
        with open(path, "w", encoding="ascii") as fp:
            fp.write("".join(lines))

    def test_out_of_order_keys(self):
        """Test a non-ascending key raises StreamError after earlier records."""
        self._write_plain(["01\taa\n", "03\tbb\n", "02\tcc\n"])
        seen = []
        with self.provider.open(self.tmpdir) as store_set:
            with store_set.ordered_stream("bank") as stream:
                with self.assertRaises(StreamError):
                    for key, _value in stream:
                        seen.append(key)
        self.assertEqual(seen, [b"\x01", b"\x03"])

    def test_duplicate_keys(self):
        self._write_plain(["01\taa\n", "01\tbb\n"])
        with self.provider.open(self.tmpdir) as store_set:
            with store_set.ordered_stream("bank") as stream:
                with self.assertRaises(StreamError):
                    list(stream)

    def test_malformed_record(self):
        self._write_plain(["01\taa\n", "zz\n"])
        with self.provider.open(self.tmpdir) as store_set:
            with store_set.ordered_stream("bank") as stream:
                with self.assertRaises(StreamError):
                    list(stream)

    def test_blank_lines_skipped(self):
        self._write_plain(["01\taa\n", "\n", "02\tbb\n"])
        with self.provider.open(self.tmpdir) as store_set:
            with store_set.ordered_stream("bank") as stream:
                self.assertEqual(list(stream), [(b"\x01", b"\xaa"), (b"\x02", b"\xbb")])

    def test_store_name_quoting(self):
        write_dump(self.tmpdir, 1, {"a/b c": [(b"k", b"v")]})
        with self.provider.open(self.tmpdir) as store_set:
            self.assertEqual(store_set.store_names(), {"a/b c"})
            with store_set.ordered_stream("a/b c") as stream:
                self.assertEqual(list(stream), [(b"k", b"v")])
