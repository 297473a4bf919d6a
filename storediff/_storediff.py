# Copyright Red Hat
#
# storediff/_storediff.py - Store differ global definitions
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level storediff package.
"""
from typing import Optional, TextIO, Union, TYPE_CHECKING
import logging
import weakref
import sys

if TYPE_CHECKING:
    from .progress import ProgressBase

_log = logging.getLogger("storediff")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Storediff debugging subsystem mask
STOREDIFF_DEBUG_DIFFER = 1
STOREDIFF_DEBUG_STORES = 2
STOREDIFF_DEBUG_COMMAND = 4
STOREDIFF_DEBUG_ACQUIRE = 8
STOREDIFF_DEBUG_SERVER = 16
STOREDIFF_DEBUG_ALL = (
    STOREDIFF_DEBUG_DIFFER
    | STOREDIFF_DEBUG_STORES
    | STOREDIFF_DEBUG_COMMAND
    | STOREDIFF_DEBUG_ACQUIRE
    | STOREDIFF_DEBUG_SERVER
)

# Storediff debugging subsystem names
STOREDIFF_SUBSYSTEM_DIFFER = "storediff.differ"
STOREDIFF_SUBSYSTEM_STORES = "storediff.stores"
STOREDIFF_SUBSYSTEM_COMMAND = "storediff.command"
STOREDIFF_SUBSYSTEM_ACQUIRE = "storediff.acquire"
STOREDIFF_SUBSYSTEM_SERVER = "storediff.server"

_DEBUG_MASK_TO_SUBSYSTEM = {
    STOREDIFF_DEBUG_DIFFER: STOREDIFF_SUBSYSTEM_DIFFER,
    STOREDIFF_DEBUG_STORES: STOREDIFF_SUBSYSTEM_STORES,
    STOREDIFF_DEBUG_COMMAND: STOREDIFF_SUBSYSTEM_COMMAND,
    STOREDIFF_DEBUG_ACQUIRE: STOREDIFF_SUBSYSTEM_ACQUIRE,
    STOREDIFF_DEBUG_SERVER: STOREDIFF_SUBSYSTEM_SERVER,
}

_debug_subsystems = set()

# Live progress indicators that need to know about interleaved log output.
_active_progress: weakref.WeakSet = weakref.WeakSet()


def hexlify(value: Optional[bytes]) -> Optional[str]:
    """
    Render an optional binary value as a lowercase hex string.

    :param value: The bytes to render, or ``None``.
    :type value: ``Optional[bytes]``
    :returns: The hex string or ``None`` if ``value`` is ``None``.
    :rtype: ``Optional[str]``
    """
    return value.hex() if value is not None else None


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        if record.levelno != logging.DEBUG:
            return True

        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``storediff`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    storediff_log = logging.getLogger("storediff")

    for handler in storediff_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``storediff`` package.

    :param mask: the logical OR of the ``STOREDIFF_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > STOREDIFF_DEBUG_ALL:
        raise ValueError(f"Invalid storediff debug mask: {mask}")

    enabled_subsystems = [
        subsystem_name
        for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items()
        if mask & flag
    ]

    storediff_log = logging.getLogger("storediff")
    for handler in storediff_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


def register_progress(progress: Union["ProgressBase"]):
    """Register a progress instance for log coordination."""
    _active_progress.add(progress)
    progress.registered = True


def unregister_progress(progress: Union["ProgressBase"]):
    """Unregister a progress instance."""
    _active_progress.discard(progress)
    progress.registered = False


def notify_log_output(stream: TextIO):
    """
    Tell live progress indicators that a log record was written to ``stream``
    so that the next update does not overwrite it.

    :param stream: The stream that received output.
    :type stream: ``TextIO``
    """
    if stream not in (sys.stdout, sys.stderr):
        return
    for progress in list(_active_progress):
        if hasattr(progress, "reset_position"):
            progress.reset_position()


class ProgressAwareHandler(logging.StreamHandler):
    """
    A console logging handler that cooperates with active progress
    indicators writing to the same terminal.
    """

    def __init__(self, stream: Optional[TextIO] = None, **kwargs):
        super().__init__(stream=stream or sys.stderr, **kwargs)

    def emit(self, record):
        try:
            msg = self.format(record)
            self.stream.write(msg + "\n")
            self.stream.flush()
            notify_log_output(self.stream)
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


#
# Storediff exception types
#


class StoreDiffError(Exception):
    """
    Base class for store differ errors.
    """


class StoreDiffArgumentError(StoreDiffError):
    """
    An invalid argument or option value was supplied.
    """


class AcquisitionError(StoreDiffError):
    """
    A snapshot source could not be acquired: the path is missing, the
    download failed or the archive is malformed or unsupported.
    """


class StoreOpenError(StoreDiffError):
    """
    A storage engine directory could not be opened at the requested
    version.
    """


class StoreNotFoundError(StoreOpenError):
    """
    The storage engine directory or the requested version does not exist.
    """


class StoreCorruptError(StoreOpenError):
    """
    The storage engine directory exists but its contents cannot be read.
    """


class UnsupportedStoreError(StoreDiffError):
    """
    A named store exposes no ordered iteration capability.
    """


class StreamError(StoreDiffError):
    """
    Reading an ordered key stream failed part way through.
    """


class StoreDiffCancelledError(StoreDiffError):
    """
    The comparison was cancelled or exceeded its deadline.
    """


__all__ = [
    "hexlify",
    "STOREDIFF_DEBUG_DIFFER",
    "STOREDIFF_DEBUG_STORES",
    "STOREDIFF_DEBUG_COMMAND",
    "STOREDIFF_DEBUG_ACQUIRE",
    "STOREDIFF_DEBUG_SERVER",
    "STOREDIFF_DEBUG_ALL",
    # Debug logging - subsystem name interface
    "SubsystemFilter",
    "STOREDIFF_SUBSYSTEM_DIFFER",
    "STOREDIFF_SUBSYSTEM_STORES",
    "STOREDIFF_SUBSYSTEM_COMMAND",
    "STOREDIFF_SUBSYSTEM_ACQUIRE",
    "STOREDIFF_SUBSYSTEM_SERVER",
    "set_debug_mask",
    "get_debug_mask",
    # Progress log callbacks
    "register_progress",
    "unregister_progress",
    "notify_log_output",
    "ProgressAwareHandler",
    "StoreDiffError",
    "StoreDiffArgumentError",
    "AcquisitionError",
    "StoreOpenError",
    "StoreNotFoundError",
    "StoreCorruptError",
    "UnsupportedStoreError",
    "StreamError",
    "StoreDiffCancelledError",
]
