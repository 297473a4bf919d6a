# Copyright Red Hat
#
# storediff/stores/dumpdir.py - Store differ dump directory provider
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Dump directory store provider.

A dump directory is a portable export of a versioned storage engine. The
manifest ``storediff.json`` at the top of the directory lists, for each
committed version, the named stores with their root hash, store kind and data
file::

    {
        "format": 1,
        "latest": 12,
        "versions": {
            "12": {
                "bank": {"hash": "9f86...", "kind": "iavl", "data": "data/12/bank.kv.zst"},
                "mem": {"hash": "e3b0...", "kind": "transient", "data": null}
            }
        }
    }

Data files hold one ``hexkey<TAB>hexvalue`` record per line in ascending key
order, optionally compressed with zstandard (``.zst``) or xz (``.xz``). Files
are read as a stream so that a store is never loaded into memory as a whole.
"""
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, TextIO
from urllib.parse import quote
import logging
import json
import lzma
import io
import os

import zstandard as zstd

from storediff import (
    STOREDIFF_SUBSYSTEM_STORES,
    StoreCorruptError,
    StoreNotFoundError,
    StreamError,
)

from ._store import (
    KeyValue,
    OrderedKeyStream,
    StoreCapability,
    StoreProvider,
    StoreSet,
    compute_store_hash,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_stores(msg, *args, **kwargs):
    """A wrapper for stores subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_STORES}, **kwargs)


#: Name of the manifest file at the top of a dump directory
MANIFEST_NAME = "storediff.json"

#: Supported manifest format version
MANIFEST_FORMAT = 1

#: Store kinds and the capability each provides when backed by a data file
STORE_KINDS: Dict[str, StoreCapability] = {
    "iavl": StoreCapability.STRUCTURAL,
    "kv": StoreCapability.GENERIC,
    "transient": StoreCapability.NONE,
}

#: Record field separator in data files
_RECORD_SEP = "\t"

_READ_ERRORS = (OSError, EOFError, ValueError, lzma.LZMAError, zstd.ZstdError)


def _open_data_file(path: str) -> TextIO:
    """
    Open a (possibly compressed) data file for line-oriented reading.

    :param path: Path to the data file.
    :type path: ``str``
    :returns: A text stream.
    :rtype: ``TextIO``
    """
    if path.endswith(".zst"):
        # The TextIOWrapper closes the decompressor, which closes the file.
        fh = open(path, "rb")  # pylint: disable=consider-using-with
        reader = zstd.ZstdDecompressor().stream_reader(fh, closefd=True)
        return io.TextIOWrapper(reader, encoding="ascii")
    if path.endswith(".xz"):
        return lzma.open(path, mode="rt", encoding="ascii")
    return open(path, "r", encoding="ascii")  # pylint: disable=consider-using-with


class DumpKeyStream(OrderedKeyStream):
    """
    An ``OrderedKeyStream`` reading a dump directory data file.
    """

    def __init__(self, name: str, path: str):
        super().__init__(name)
        self.path = path
        self._open_files = []

    def _iter_items(self) -> Iterator[KeyValue]:
        _log_debug_stores("Starting pass over %s for store '%s'", self.path, self.name)
        try:
            fp = _open_data_file(self.path)
        except _READ_ERRORS as err:
            raise StreamError(
                f"Cannot open data for store '{self.name}': {err}"
            ) from err
        self._open_files.append(fp)
        return self._read_records(fp)

    def _read_records(self, fp: TextIO) -> Iterator[KeyValue]:
        last_key = None
        lineno = 0
        try:
            while True:
                try:
                    line = fp.readline()
                    lineno += 1
                    if not line:
                        return
                    line = line.rstrip("\n")
                    if not line:
                        continue
                    key_hex, value_hex = line.split(_RECORD_SEP)
                    key = bytes.fromhex(key_hex)
                    value = bytes.fromhex(value_hex)
                except _READ_ERRORS as err:
                    raise StreamError(
                        f"Error reading store '{self.name}' at {self.path}:{lineno}: {err}"
                    ) from err
                if last_key is not None and key <= last_key:
                    raise StreamError(
                        f"Keys out of order in store '{self.name}' at "
                        f"{self.path}:{lineno}"
                    )
                last_key = key
                yield key, value
        finally:
            fp.close()
            if fp in self._open_files:
                self._open_files.remove(fp)

    def _do_close(self):
        for fp in list(self._open_files):
            fp.close()
        self._open_files.clear()


class _DumpStoreInfo:
    """Manifest entry for one store."""

    def __init__(self, store_hash: bytes, kind: str, data_path: Optional[str]):
        self.hash = store_hash
        self.kind = kind
        self.data_path = data_path
        self.capability = STORE_KINDS[kind] if data_path else StoreCapability.NONE


class DumpDirStoreSet(StoreSet):
    """
    A ``StoreSet`` read from a dump directory.
    """

    def __init__(self, directory: str, version: int, stores: Dict[str, _DumpStoreInfo]):
        super().__init__(version)
        self.directory = directory
        self._stores = stores

    def __repr__(self):
        return f"DumpDirStoreSet('{self.directory}', {self.version})"

    def store_names(self) -> Set[str]:
        return set(self._stores)

    def hash(self, name: str) -> Optional[bytes]:
        info = self._stores.get(name)
        return info.hash if info else None

    def capability(self, name: str) -> StoreCapability:
        info = self._stores.get(name)
        return info.capability if info else StoreCapability.NONE

    def kind(self, name: str) -> Optional[str]:
        """
        Return the manifest kind string for store ``name``.
        """
        info = self._stores.get(name)
        return info.kind if info else None

    def _open_stream(self, name: str, structural: bool) -> OrderedKeyStream:
        return DumpKeyStream(name, self._stores[name].data_path)


def _read_manifest(directory: str) -> dict:
    """
    Load and sanity check the manifest of dump directory ``directory``.
    """
    if not os.path.isdir(directory):
        raise StoreNotFoundError(f"Store directory {directory} does not exist")

    path = os.path.join(directory, MANIFEST_NAME)
    if not os.path.exists(path):
        raise StoreNotFoundError(f"No {MANIFEST_NAME} manifest found in {directory}")

    try:
        with open(path, "r", encoding="utf8") as fp:
            manifest = json.load(fp)
    except (OSError, ValueError) as err:
        raise StoreCorruptError(f"Cannot read manifest {path}: {err}") from err

    if not isinstance(manifest, dict) or not isinstance(manifest.get("versions"), dict):
        raise StoreCorruptError(f"Malformed manifest {path}")

    if manifest.get("format") != MANIFEST_FORMAT:
        raise StoreCorruptError(
            f"Unsupported manifest format in {path}: {manifest.get('format')}"
        )

    for version, entries in manifest["versions"].items():
        if not _is_version(version):
            raise StoreCorruptError(f"Malformed version '{version}' in {path}")
        if not isinstance(entries, dict):
            raise StoreCorruptError(f"Malformed store table for version {version} in {path}")

    latest = manifest.get("latest")
    if latest is not None and not _is_version(latest):
        raise StoreCorruptError(f"Malformed latest version '{latest}' in {path}")
    return manifest


def _is_version(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    return isinstance(value, str) and value.isdigit() and value.isascii()


def _data_path(directory: str, data: str) -> str:
    """
    Return the path of data file ``data`` below ``directory``.

    :raises StoreCorruptError: If the path would leave ``directory``.
    """
    root = os.path.realpath(directory)
    target = os.path.realpath(os.path.join(root, data))
    if os.path.isabs(data) or os.path.commonpath([root, target]) != root:
        raise StoreCorruptError(f"Data file path escapes {directory}: {data}")
    return os.path.join(directory, data)


class DumpDirProvider(StoreProvider):
    """
    Opens dump directories as ``DumpDirStoreSet`` objects.
    """

    def open(self, directory: str, wanted_version: Optional[int] = None) -> StoreSet:
        manifest = _read_manifest(directory)
        versions = manifest["versions"]

        version = manifest.get("latest") if wanted_version is None else wanted_version
        if version is None or str(version) not in versions:
            raise StoreNotFoundError(
                f"Version {version} not found in {directory} "
                f"(available: {', '.join(sorted(versions, key=int)) or 'none'})"
            )

        stores = {}
        for name, entry in versions[str(version)].items():
            try:
                store_hash = bytes.fromhex(entry["hash"])
                kind = entry.get("kind", "iavl")
                data = entry.get("data")
            except (KeyError, TypeError, ValueError, AttributeError) as err:
                raise StoreCorruptError(
                    f"Malformed manifest entry for store '{name}' in {directory}: {err}"
                ) from err
            if not isinstance(kind, str) or kind not in STORE_KINDS:
                raise StoreCorruptError(f"Unknown kind '{kind}' for store '{name}'")
            if data is not None and not isinstance(data, str):
                raise StoreCorruptError(f"Malformed data path for store '{name}'")
            data_path = _data_path(directory, data) if data else None
            if data_path and not os.path.isfile(data_path):
                raise StoreCorruptError(
                    f"Data file {data_path} for store '{name}' is missing"
                )
            stores[name] = _DumpStoreInfo(store_hash, kind, data_path)

        _log_debug_stores(
            "Opened %s at version %d with %d stores", directory, int(version), len(stores)
        )
        return DumpDirStoreSet(directory, int(version), stores)

    def versions(self, directory: str) -> Set[int]:
        """
        Return the set of versions recorded in dump directory ``directory``.
        """
        return {int(version) for version in _read_manifest(directory)["versions"]}


def write_dump(
    directory: str,
    version: int,
    stores: Mapping[str, Optional[Iterable[KeyValue]]],
    hashes: Optional[Mapping[str, bytes]] = None,
    kinds: Optional[Mapping[str, str]] = None,
    compress: Optional[str] = "zstd",
    latest: bool = True,
):
    """
    Write the stores of one version into dump directory ``directory``,
    creating or updating its manifest.

    :param directory: The dump directory (created if needed).
    :type directory: ``str``
    :param version: The commit version to write.
    :type version: ``int``
    :param stores: Store name to key/value pairs. ``None`` writes a store
                   without a data file.
    :param hashes: Optional explicit root hashes. Missing entries are
                   computed with ``compute_store_hash()``.
    :param kinds: Optional store kinds (default ``"iavl"``).
    :param compress: ``"zstd"``, ``"xz"`` or ``None`` for plain text.
    :type compress: ``Optional[str]``
    :param latest: Record ``version`` as the latest version.
    :type latest: ``bool``
    """
    hashes = hashes or {}
    kinds = kinds or {}
    suffix = {None: "", "zstd": ".zst", "xz": ".xz"}[compress]

    manifest_path = os.path.join(directory, MANIFEST_NAME)
    if os.path.exists(manifest_path):
        manifest = _read_manifest(directory)
    else:
        manifest = {"format": MANIFEST_FORMAT, "latest": None, "versions": {}}

    data_dir = os.path.join(directory, "data", str(version))
    os.makedirs(data_dir, exist_ok=True)

    entries = {}
    for name, items in stores.items():
        data = None
        store_hash = hashes.get(name)
        if items is not None:
            items = sorted(items)
            data = os.path.join("data", str(version), quote(name, safe="") + ".kv" + suffix)
            lines = "".join(f"{k.hex()}{_RECORD_SEP}{v.hex()}\n" for k, v in items)
            raw = lines.encode("ascii")
            if compress == "zstd":
                raw = zstd.ZstdCompressor().compress(raw)
            elif compress == "xz":
                raw = lzma.compress(raw)
            with open(os.path.join(directory, data), "wb") as fp:
                fp.write(raw)
            if store_hash is None:
                store_hash = compute_store_hash(items)
        entries[name] = {
            "hash": (store_hash or b"").hex(),
            "kind": kinds.get(name, "iavl"),
            "data": data,
        }

    manifest["versions"][str(version)] = entries
    if latest:
        manifest["latest"] = version

    with open(manifest_path, "w", encoding="utf8") as fp:
        json.dump(manifest, fp, indent=4)
    _log_debug_stores("Wrote version %d with %d stores to %s", version, len(entries), directory)


__all__ = [
    "MANIFEST_NAME",
    "STORE_KINDS",
    "DumpDirProvider",
    "DumpDirStoreSet",
    "DumpKeyStream",
    "write_dump",
]
