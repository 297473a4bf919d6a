# Copyright Red Hat
#
# storediff/server.py - Store differ HTTP comparison server
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
HTTP interface for store set comparisons.

A ``CompareServer`` owns its FastAPI application, route table and listening
address. Each comparison request acquires its sources into a private
``WorkDir`` that is removed when the request completes.
"""
from dataclasses import replace
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import uvicorn

from storediff import (
    STOREDIFF_SUBSYSTEM_SERVER,
    AcquisitionError,
    StoreCorruptError,
    StoreDiffArgumentError,
    StoreDiffCancelledError,
    StoreNotFoundError,
    __version__,
)
from storediff.acquire import WorkDir, acquire, is_url
from storediff.differ import DiffOptions, StoreDiffer
from storediff.stores import DumpDirProvider, StoreProvider

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_server(msg, *args, **kwargs):
    """A wrapper for server subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_SERVER}, **kwargs)


#: Default listening address
DEFAULT_HOST = "127.0.0.1"

#: Default listening port
DEFAULT_PORT = 8080


class CompareRequest(BaseModel):
    """Body of a ``POST /compare`` request."""

    left: str
    right: str
    left_version: Optional[int] = Field(default=None, ge=0)
    right_version: Optional[int] = Field(default=None, ge=0)
    max_key_diffs: Optional[int] = Field(default=None, ge=0)


class CompareServer:
    """
    HTTP server running store set comparisons on request.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        options: Optional[DiffOptions] = None,
        provider: Optional[StoreProvider] = None,
        allow_local: bool = False,
    ):
        """
        Initialise a new ``CompareServer``.

        :param host: The address to listen on.
        :type host: ``str``
        :param port: The port to listen on.
        :type port: ``int``
        :param options: Default comparison options for every request.
        :type options: ``Optional[DiffOptions]``
        :param provider: The store provider used to open acquired sources.
        :type provider: ``Optional[StoreProvider]``
        :param allow_local: Accept local file system paths as comparison
                            sources. When unset only URLs are accepted.
        :type allow_local: ``bool``
        """
        self.host = host
        self.port = port
        self.options = replace(options or DiffOptions(), quiet=True)
        self.provider = provider or DumpDirProvider()
        self.allow_local = allow_local
        self.app = FastAPI(title="storediff", version=__version__)
        self._server: Optional[uvicorn.Server] = None
        self._add_routes()

    def _add_routes(self):
        self.app.add_api_route("/health", self.health, methods=["GET"])
        self.app.add_api_route("/compare", self.compare, methods=["POST"])

    def health(self) -> Dict[str, Any]:
        """
        Report server liveness.
        """
        return {"status": "ok", "version": __version__}

    def _request_options(self, request: CompareRequest) -> DiffOptions:
        changes = {
            "left_version": request.left_version,
            "right_version": request.right_version,
        }
        if request.max_key_diffs is not None:
            changes["max_key_diffs"] = request.max_key_diffs
        return replace(self.options, **changes)

    def _check_source(self, source: str):
        if not self.allow_local and not is_url(source):
            raise AcquisitionError(f"Local sources are not accepted: {source}")

    def compare(self, request: CompareRequest) -> Dict[str, Any]:
        """
        Acquire and compare the two sources named in ``request`` and return
        the JSON report.

        :param request: The comparison request.
        :type request: ``CompareRequest``
        :returns: The ``ComparisonReport`` as a dictionary.
        :rtype: ``Dict[str, Any]``
        """
        _log_info("Comparing %s with %s", request.left, request.right)
        try:
            self._check_source(request.left)
            self._check_source(request.right)
            options = self._request_options(request)
            with WorkDir(prefix="storediff_req_") as workdir:
                left_dir = acquire(request.left, workdir, label="left")
                right_dir = acquire(request.right, workdir, label="right")
                _log_debug_server("Acquired %s and %s", left_dir, right_dir)
                differ = StoreDiffer(options, provider=self.provider, color="never")
                report = differ.compare_dirs(left_dir, right_dir)
        except (AcquisitionError, StoreDiffArgumentError) as err:
            _log_error("Bad comparison request: %s", err)
            raise HTTPException(status_code=400, detail=str(err)) from err
        except StoreNotFoundError as err:
            _log_error("Store not found: %s", err)
            raise HTTPException(status_code=404, detail=str(err)) from err
        except StoreCorruptError as err:
            _log_error("Store corrupt: %s", err)
            raise HTTPException(status_code=422, detail=str(err)) from err
        except StoreDiffCancelledError as err:
            _log_error("Comparison aborted: %s", err)
            raise HTTPException(status_code=504, detail=str(err)) from err
        return report.to_dict()

    def serve(self):
        """
        Run the server until ``shutdown()`` is called or the process is
        interrupted.
        """
        config = uvicorn.Config(
            self.app, host=self.host, port=self.port, log_level="warning"
        )
        self._server = uvicorn.Server(config)
        _log_info("Serving on http://%s:%d", self.host, self.port)
        try:
            self._server.run()
        finally:
            self._server = None
            _log_info("Server stopped")

    def shutdown(self):
        """
        Request a running ``serve()`` call to return.
        """
        if self._server is not None:
            _log_debug_server("Shutdown requested")
            self._server.should_exit = True


__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "CompareRequest",
    "CompareServer",
]
