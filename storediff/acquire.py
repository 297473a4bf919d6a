# Copyright Red Hat
#
# storediff/acquire.py - Store differ data directory acquisition
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Acquire store data directories from local paths, archives and URLs.
"""
from typing import Optional
import tempfile
import tarfile
import zipfile
import logging
import shutil
import os

import requests

from storediff import STOREDIFF_SUBSYSTEM_ACQUIRE, AcquisitionError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_acquire(msg, *args, **kwargs):
    """A wrapper for acquire subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_ACQUIRE}, **kwargs)


#: Timeout in seconds for HTTP connect and read operations
DOWNLOAD_TIMEOUT = 60

#: Download chunk size in bytes
_CHUNK_SIZE = 1024 * 1024

_ZIP_SUFFIXES = (".zip",)
_TAR_SUFFIXES = (".tar.gz", ".tgz")


class WorkDir:
    """
    A temporary working directory that is removed when the context exits,
    whether normally or by an exception.
    """

    def __init__(self, prefix: str = "storediff_", parent: Optional[str] = None):
        self.prefix = prefix
        self.parent = parent
        self.path: Optional[str] = None

    def __enter__(self) -> "WorkDir":
        self.path = tempfile.mkdtemp(prefix=self.prefix, dir=self.parent)
        _log_debug_acquire("Created working directory %s", self.path)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()

    def subdir(self, name: str) -> str:
        """
        Create and return a new sub-directory ``name`` of this working
        directory.
        """
        if self.path is None:
            raise AcquisitionError("Working directory is not active")
        path = os.path.join(self.path, name)
        os.makedirs(path)
        return path

    def cleanup(self):
        """
        Remove the working directory and its contents.
        """
        if self.path is None:
            return
        _log_debug_acquire("Removing working directory %s", self.path)
        shutil.rmtree(self.path, ignore_errors=True)
        self.path = None


def is_url(source: str) -> bool:
    """
    Return ``True`` if ``source`` is an HTTP or HTTPS URL.
    """
    return source.startswith(("http://", "https://"))


def _archive_type(name: str) -> Optional[str]:
    lower = name.lower()
    if lower.endswith(_ZIP_SUFFIXES):
        return "zip"
    if lower.endswith(_TAR_SUFFIXES):
        return "tar"
    return None


def _check_member(dest: str, member: str) -> str:
    """
    Return the extraction target for archive ``member`` below ``dest``.

    :raises AcquisitionError: If the member would be written outside of
                              ``dest``.
    """
    root = os.path.realpath(dest)
    target = os.path.realpath(os.path.join(root, member))
    if os.path.isabs(member) or os.path.commonpath([root, target]) != root:
        raise AcquisitionError(f"Archive member escapes destination: {member}")
    return target


def _extract_zip(archive: str, dest: str):
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            _check_member(dest, info.filename)
        zf.extractall(dest)


def _extract_tar(archive: str, dest: str):
    with tarfile.open(archive, mode="r:gz") as tf:
        members = []
        for member in tf.getmembers():
            _check_member(dest, member.name)
            if member.isdir() or member.isfile():
                members.append(member)
            else:
                _log_debug_acquire("Skipping non-regular archive member %s", member.name)
        kwargs = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}
        tf.extractall(dest, members=members, **kwargs)


def extract(archive: str, dest: str, name: Optional[str] = None) -> str:
    """
    Extract ``archive`` into ``dest`` and return the data directory.

    If the archive holds a single top-level directory that directory is
    returned, otherwise ``dest`` itself.

    :param archive: Path to a ``.zip``, ``.tar.gz`` or ``.tgz`` archive.
    :type archive: ``str``
    :param dest: Existing destination directory.
    :type dest: ``str``
    :param name: Name used to detect the archive type (defaults to
                 ``archive``).
    :type name: ``Optional[str]``
    :returns: The extracted data directory.
    :rtype: ``str``
    :raises AcquisitionError: If the archive is unsupported or malformed.
    """
    kind = _archive_type(name or archive)
    _log_debug_acquire("Extracting %s archive %s to %s", kind, archive, dest)
    try:
        if kind == "zip":
            _extract_zip(archive, dest)
        elif kind == "tar":
            _extract_tar(archive, dest)
        else:
            raise AcquisitionError(f"Unsupported archive type: {name or archive}")
    except (zipfile.BadZipFile, tarfile.TarError, EOFError, OSError) as err:
        raise AcquisitionError(f"Failed to extract {name or archive}: {err}") from err

    entries = os.listdir(dest)
    if not entries:
        raise AcquisitionError(f"No files extracted from {name or archive}")
    if len(entries) == 1 and os.path.isdir(os.path.join(dest, entries[0])):
        return os.path.join(dest, entries[0])
    return dest


def download(url: str, dest_file: str, timeout: float = DOWNLOAD_TIMEOUT):
    """
    Download ``url`` to ``dest_file``.

    :raises AcquisitionError: On any network or HTTP failure.
    """
    _log_info("Downloading %s", url)
    try:
        with requests.get(url, timeout=timeout, stream=True) as response:
            response.raise_for_status()
            with open(dest_file, "wb") as fp:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    fp.write(chunk)
    except requests.exceptions.HTTPError as err:
        raise AcquisitionError(
            f"Failed to download {url}: status {err.response.status_code}"
        ) from err
    except requests.exceptions.Timeout as err:
        raise AcquisitionError(f"Timed out downloading {url}") from err
    except (requests.exceptions.RequestException, OSError) as err:
        raise AcquisitionError(f"Failed to download {url}: {err}") from err
    _log_debug_acquire("Downloaded %s to %s", url, dest_file)


def acquire(source: str, workdir: WorkDir, label: str = "data") -> str:
    """
    Return a local data directory for ``source``.

    Local directories are used in place. Local archives and HTTP(S) URLs are
    fetched and extracted below ``workdir``.

    :param source: A directory path, archive path or URL.
    :type source: ``str``
    :param workdir: The active working directory for extracted data.
    :type workdir: ``WorkDir``
    :param label: Sub-directory name used below ``workdir``.
    :type label: ``str``
    :returns: Path to the data directory.
    :rtype: ``str``
    :raises AcquisitionError: If the source cannot be acquired.
    """
    if is_url(source):
        dest = workdir.subdir(label)
        archive = os.path.join(workdir.path, f"{label}.download")
        download(source, archive)
        name = source.split("?", 1)[0]
        return extract(archive, dest, name=name)

    if os.path.isdir(source):
        _log_debug_acquire("Using local directory %s", source)
        return source

    if not os.path.exists(source):
        raise AcquisitionError(f"Source path {source} does not exist")

    if _archive_type(source) is None:
        raise AcquisitionError(f"Unsupported archive type: {source}")

    return extract(source, workdir.subdir(label))


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "WorkDir",
    "acquire",
    "download",
    "extract",
    "is_url",
]
