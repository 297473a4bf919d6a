# Copyright Red Hat
#
# storediff/differ/options.py - Store differ options
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Store comparison options.
"""
from dataclasses import dataclass, fields
from typing import Optional, Union
from argparse import Namespace
import logging

from storediff import StoreDiffArgumentError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default maximum number of key differences reported per store
DEFAULT_MAX_KEY_DIFFS = 10

#: Default number of sample keys reported for stores missing on one side
DEFAULT_SAMPLE_KEYS = 3

#: Default size of the per-store worker pool
DEFAULT_JOBS = 4


@dataclass(frozen=True)
class DiffOptions:
    """
    Store set comparison options.
    """

    #: Maximum number of key differences to report per store
    max_key_diffs: int = DEFAULT_MAX_KEY_DIFFS
    #: Number of keys to sample from stores present on one side only
    sample_keys: int = DEFAULT_SAMPLE_KEYS
    #: Run the coarse shape diff when keys match but hashes differ
    shape_diff: bool = True
    #: Number of stores to resolve concurrently
    jobs: int = DEFAULT_JOBS
    #: Overall comparison deadline in seconds
    timeout: Optional[float] = None
    #: Version to open on the left side (``None`` for latest)
    left_version: Optional[int] = None
    #: Version to open on the right side (``None`` for latest)
    right_version: Optional[int] = None
    #: Do not output progress or status updates
    quiet: bool = False

    def __post_init__(self):
        if self.max_key_diffs < 0:
            raise StoreDiffArgumentError(
                f"max_key_diffs cannot be negative: {self.max_key_diffs}"
            )
        if self.sample_keys < 0:
            raise StoreDiffArgumentError(
                f"sample_keys cannot be negative: {self.sample_keys}"
            )
        if self.jobs < 1:
            raise StoreDiffArgumentError(f"jobs must be at least 1: {self.jobs}")
        if self.timeout is not None and self.timeout <= 0:
            raise StoreDiffArgumentError(f"timeout must be positive: {self.timeout}")

    def __str__(self):
        """
        Return a human readable string representation of this
        ``DiffOptions`` instance.

        :returns: A human readable string.
        :rtype: ``str``
        """
        return "\n".join(f"{key}={val}" for key, val in self.__dict__.items())

    @classmethod
    def from_cmd_args(cls, cmd_args: Namespace) -> "DiffOptions":
        """
        Initialise DiffOptions from command line arguments.

        Arguments that are absent from ``cmd_args`` or set to ``None`` take
        the ``DiffOptions`` default, except for the optional fields whose
        default is ``None``.

        :param cmd_args: The command line arguments.
        :type cmd_args: ``Namespace``
        :returns: A new ``DiffOptions`` instance
        :rtype: ``DiffOptions``
        """
        optional = ("timeout", "left_version", "right_version")

        def get_value(name: str) -> Union[bool, int, float, None]:
            return getattr(cmd_args, name)

        kwargs = {
            f.name: get_value(f.name)
            for f in fields(cls)
            if hasattr(cmd_args, f.name)
            and (get_value(f.name) is not None or f.name in optional)
        }
        options = cls(**kwargs)
        _log_debug("Initialised DiffOptions from arguments: %s", repr(options))
        return options
