# Copyright Red Hat
#
# storediff/__init__.py - Store differ package initialisation
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Storediff top-level package.
"""
from ._storediff import *  # noqa: F401, F403
from ._storediff import __all__  # noqa: F401

__version__ = "0.1.0"
