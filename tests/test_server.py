# Copyright Red Hat
#
# tests/test_server.py - HTTP comparison server tests
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import tempfile
import shutil
import os

from fastapi.testclient import TestClient

from storediff import StoreDiffCancelledError, __version__
from storediff.acquire import WorkDir
from storediff.differ import DiffOptions
from storediff.server import CompareServer
from storediff.stores import write_dump
from storediff.stores.dumpdir import MANIFEST_NAME


class TestCompareServer(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="storediff_test_")
        self.left = os.path.join(self.tmpdir, "left")
        self.right = os.path.join(self.tmpdir, "right")
        write_dump(self.left, 4, {"bank": [(b"a", b"1"), (b"b", b"2")]})
        write_dump(self.right, 4, {"bank": [(b"a", b"1"), (b"b", b"3")]})
        self.server = CompareServer(
            port=0, options=DiffOptions(max_key_diffs=5), allow_local=True
        )
        self.client = TestClient(self.server.app)

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_options_forced_quiet(self):
        self.assertTrue(self.server.options.quiet)
        self.assertEqual(self.server.options.max_key_diffs, 5)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "version": __version__})

    def test_compare(self):
        response = self.client.post(
            "/compare", json={"left": self.left, "right": self.right}
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["version_left"], 4)
        self.assertFalse(data["summary"]["is_identical"])
        self.assertEqual(data["diffs"][0]["key_diffs"][0]["kind"], "value_differs")

    def test_compare_identical(self):
        response = self.client.post(
            "/compare", json={"left": self.left, "right": self.left}
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["summary"]["is_identical"])

    def test_compare_max_key_diffs(self):
        response = self.client.post(
            "/compare",
            json={"left": self.left, "right": self.right, "max_key_diffs": 0},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["diffs"][0]["key_diffs"], [])

    def test_compare_bad_source(self):
        response = self.client.post(
            "/compare",
            json={"left": os.path.join(self.tmpdir, "nope.zip"), "right": self.right},
        )
        self.assertEqual(response.status_code, 400)

    def test_compare_version_not_found(self):
        response = self.client.post(
            "/compare",
            json={"left": self.left, "right": self.right, "right_version": 99},
        )
        self.assertEqual(response.status_code, 404)
        self.assertIn("99", response.json()["detail"])

    def test_compare_corrupt(self):
        with open(os.path.join(self.right, MANIFEST_NAME), "w", encoding="utf8") as fp:
            fp.write("garbage")
        response = self.client.post(
            "/compare", json={"left": self.left, "right": self.right}
        )
        self.assertEqual(response.status_code, 422)

    def test_compare_invalid_body(self):
        response = self.client.post("/compare", json={"left": self.left})
        self.assertEqual(response.status_code, 422)
        response = self.client.post(
            "/compare",
            json={"left": self.left, "right": self.right, "max_key_diffs": -1},
        )
        self.assertEqual(response.status_code, 422)

    @patch("storediff.server.StoreDiffer.compare_dirs")
    def test_compare_timeout(self, mock_compare):
        mock_compare.side_effect = StoreDiffCancelledError("Comparison timed out")
        response = self.client.post(
            "/compare", json={"left": self.left, "right": self.right}
        )
        self.assertEqual(response.status_code, 504)

    @patch.object(WorkDir, "cleanup", autospec=True, side_effect=WorkDir.cleanup)
    def test_workdir_cleaned_on_error(self, mock_cleanup):
        response = self.client.post(
            "/compare",
            json={"left": self.left, "right": os.path.join(self.tmpdir, "x.zip")},
        )
        self.assertEqual(response.status_code, 400)
        mock_cleanup.assert_called_once()

    @patch("storediff.server.uvicorn.Server")
    def test_serve_and_shutdown(self, mock_server_class):
        instance = mock_server_class.return_value

        def _run():
            self.server.shutdown()

        instance.run.side_effect = _run
        self.server.serve()
        instance.run.assert_called_once()
        self.assertTrue(instance.should_exit)
        self.assertIsNone(self.server._server)

    def test_shutdown_not_serving(self):
        self.server.shutdown()


class TestCompareServerRemoteOnly(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="storediff_test_")
        self.left = os.path.join(self.tmpdir, "left")
        self.right = os.path.join(self.tmpdir, "right")
        write_dump(self.left, 4, {"bank": [(b"a", b"1")]})
        write_dump(self.right, 4, {"bank": [(b"a", b"2")]})
        self.server = CompareServer(port=0)
        self.client = TestClient(self.server.app)

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_local_paths_rejected(self):
        self.assertFalse(self.server.allow_local)
        response = self.client.post(
            "/compare", json={"left": self.left, "right": self.right}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("Local sources are not accepted", response.json()["detail"])

    def test_local_right_rejected(self):
        response = self.client.post(
            "/compare",
            json={"left": "https://example.com/a.zip", "right": self.right},
        )
        self.assertEqual(response.status_code, 400)

    @patch("storediff.server.acquire")
    def test_urls_accepted(self, mock_acquire):
        mock_acquire.side_effect = [self.left, self.right]
        response = self.client.post(
            "/compare",
            json={
                "left": "https://example.com/a.zip",
                "right": "https://example.com/b.tgz",
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["summary"]["is_identical"])
        self.assertEqual(mock_acquire.call_count, 2)
