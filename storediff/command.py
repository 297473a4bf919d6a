# Copyright Red Hat
#
# storediff/command.py - Store differ command interface
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``storediff.command`` module provides both the storediff command line
interface infrastructure, and a simple procedural interface to the
``storediff`` library modules.

The procedural interface is used by the ``storediff`` command line tool,
and may be used by application programs, or interactively in the Python
shell by users who do not require all the features present in the
storediff object API.
"""
from argparse import ArgumentParser
from typing import List, Optional
from os.path import basename
from json import dumps
import logging
import sys

from storediff import (
    STOREDIFF_DEBUG_ACQUIRE,
    STOREDIFF_DEBUG_ALL,
    STOREDIFF_DEBUG_COMMAND,
    STOREDIFF_DEBUG_DIFFER,
    STOREDIFF_DEBUG_SERVER,
    STOREDIFF_DEBUG_STORES,
    STOREDIFF_SUBSYSTEM_COMMAND,
    ProgressAwareHandler,
    StoreDiffError,
    SubsystemFilter,
    hexlify,
    set_debug_mask,
    __version__,
)
from storediff.acquire import WorkDir, acquire
from storediff.differ import ComparisonReport, DiffOptions, StoreDiffer
from storediff.server import DEFAULT_HOST, DEFAULT_PORT, CompareServer
from storediff.stores import DumpDirProvider, StoreProvider

DIFF_FORMATS = ComparisonReport.DIFF_FORMATS

#: Exit status when both snapshots are identical
EXIT_IDENTICAL = 0
#: Exit status when the snapshots differ
EXIT_DIFFERENT = 1
#: Exit status on any failure
EXIT_ERROR = 2

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": STOREDIFF_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None


def compare_sources(
    left: str,
    right: str,
    options: Optional[DiffOptions] = None,
    provider: Optional[StoreProvider] = None,
    color: str = "auto",
) -> ComparisonReport:
    """
    Acquire and compare two store data sources.

    :param left: The left hand directory, archive or URL.
    :type left: ``str``
    :param right: The right hand directory, archive or URL.
    :type right: ``str``
    :param options: Comparison options.
    :type options: ``Optional[DiffOptions]``
    :param provider: The store provider (default ``DumpDirProvider``).
    :type provider: ``Optional[StoreProvider]``
    :param color: A string to control color progress rendering.
    :type color: ``str``
    :returns: The comparison report.
    :rtype: ``ComparisonReport``
    """
    with WorkDir() as workdir:
        left_dir = acquire(left, workdir, label="left")
        right_dir = acquire(right, workdir, label="right")
        _log_debug_command("Acquired left=%s right=%s", left_dir, right_dir)
        differ = StoreDiffer(options, provider=provider, color=color)
        return differ.compare_dirs(left_dir, right_dir)


def show_store_set(
    source: str,
    version: Optional[int] = None,
    json: bool = False,
    provider: Optional[DumpDirProvider] = None,
):
    """
    Print the stores of one snapshot with their hashes and capabilities.

    :param source: The data directory, archive or URL.
    :type source: ``str``
    :param version: The version to show (``None`` for latest).
    :type version: ``Optional[int]``
    :param json: Output JSON instead of text.
    :type json: ``bool``
    """
    provider = provider or DumpDirProvider()
    with WorkDir() as workdir:
        directory = acquire(source, workdir)
        versions = sorted(provider.versions(directory))
        with provider.open(directory, version) as store_set:
            stores = [
                {
                    "name": name,
                    "hash": hexlify(store_set.hash(name)),
                    "capability": store_set.capability(name).value,
                }
                for name in sorted(store_set.store_names())
            ]
            if json:
                print(
                    dumps(
                        {
                            "version": store_set.version,
                            "versions": versions,
                            "stores": stores,
                        },
                        indent=4,
                    )
                )
                return
            print(f"Version: {store_set.version}")
            print(f"Available versions: {', '.join(str(v) for v in versions)}")
            for store in stores:
                print(f"{store['name']:<24} {store['hash']} ({store['capability']})")


def _compare_cmd(cmd_args):
    """
    Compare command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = DiffOptions.from_cmd_args(cmd_args)
    output_formats = cmd_args.output_format or ["short", "summary"]
    pretty = cmd_args.pretty
    color = cmd_args.color

    if pretty and "json" not in output_formats:
        _log_error("Option --pretty only supported with --output-format=json")
        return EXIT_ERROR

    report = compare_sources(cmd_args.left, cmd_args.right, options, color=color)

    spacer = ""
    for output_format in output_formats:
        text = ""
        if output_format == "names":
            text = "\n".join(report.names())
        elif output_format == "full":
            text = report.full()
        elif output_format == "short":
            text = report.short(color=color)
        elif output_format == "json":
            text = report.json(pretty=pretty)
        elif output_format == "summary":
            text = report.summary(color=color)
        if not text:
            continue
        print(spacer, end="")
        print(text)
        spacer = "\n"
    return EXIT_IDENTICAL if report.is_identical else EXIT_DIFFERENT


def _show_cmd(cmd_args):
    """
    Show command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    show_store_set(cmd_args.source, version=cmd_args.version, json=cmd_args.json)
    return EXIT_IDENTICAL


def _serve_cmd(cmd_args):
    """
    Serve command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = DiffOptions.from_cmd_args(cmd_args)
    server = CompareServer(
        cmd_args.host,
        cmd_args.port,
        options=options,
        allow_local=cmd_args.allow_local,
    )
    server.serve()
    return EXIT_IDENTICAL


def setup_logging(cmd_args):
    """
    Set up storediff logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    storediff_log = logging.getLogger("storediff")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    storediff_log.setLevel(level)
    if storediff_log.hasHandlers():
        storediff_log.handlers.clear()

    # Subsystem log filtering
    _storediff_subsystem_filter = SubsystemFilter("storediff")

    # Main console handler
    _CONSOLE_HANDLER = ProgressAwareHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_storediff_subsystem_filter)

    storediff_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down storediff logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "differ": STOREDIFF_DEBUG_DIFFER,
        "stores": STOREDIFF_DEBUG_STORES,
        "command": STOREDIFF_DEBUG_COMMAND,
        "acquire": STOREDIFF_DEBUG_ACQUIRE,
        "server": STOREDIFF_DEBUG_SERVER,
        "all": STOREDIFF_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _add_diff_args(parser):
    parser.add_argument(
        "-m",
        "--max-key-diffs",
        type=int,
        metavar="COUNT",
        help="Maximum number of key differences reported per store",
    )
    parser.add_argument(
        "-k",
        "--sample-keys",
        type=int,
        metavar="COUNT",
        help="Number of keys sampled from stores present on one side only",
    )
    parser.add_argument(
        "-S",
        "--no-shape-diff",
        dest="shape_diff",
        action="store_false",
        default=None,
        help="Do not run the coarse shape diff when keys match but hashes differ",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        help="Number of stores to compare concurrently",
    )
    parser.add_argument(
        "-T",
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Abort the comparison after SECONDS",
    )


def _add_compare_subparser(cmd_subparser):
    compare_parser = cmd_subparser.add_parser(
        "compare", help="Compare two store snapshots"
    )
    compare_parser.add_argument(
        "left", metavar="LEFT", help="Left hand directory, archive or URL"
    )
    compare_parser.add_argument(
        "right", metavar="RIGHT", help="Right hand directory, archive or URL"
    )
    compare_parser.add_argument(
        "-l",
        "--left-version",
        type=int,
        metavar="VERSION",
        help="Version to open on the left side (default: latest)",
    )
    compare_parser.add_argument(
        "-r",
        "--right-version",
        type=int,
        metavar="VERSION",
        help="Version to open on the right side (default: latest)",
    )
    _add_diff_args(compare_parser)
    compare_parser.add_argument(
        "-o",
        "--output-format",
        type=str,
        action="append",
        choices=DIFF_FORMATS,
        help=f"Output format ({', '.join(DIFF_FORMATS)})",
    )
    compare_parser.add_argument(
        "--pretty",
        action="store_true",
        help="Format JSON output for readability",
    )
    compare_parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not output progress or status information",
    )
    colors = ["auto", "never", "always"]
    compare_parser.add_argument(
        "--color",
        type=str,
        choices=colors,
        default=colors[0],
        help=f"Enable colored output ({', '.join(colors)})",
    )
    compare_parser.set_defaults(func=_compare_cmd)


def _add_show_subparser(cmd_subparser):
    show_parser = cmd_subparser.add_parser(
        "show", help="Show the stores of one snapshot"
    )
    show_parser.add_argument(
        "source", metavar="SOURCE", help="Directory, archive or URL"
    )
    show_parser.add_argument(
        "-V",
        "--store-version",
        dest="version",
        type=int,
        metavar="VERSION",
        help="Version to show (default: latest)",
    )
    show_parser.add_argument(
        "--json", action="store_true", help="Output as JSON"
    )
    show_parser.set_defaults(func=_show_cmd)


def _add_serve_subparser(cmd_subparser):
    serve_parser = cmd_subparser.add_parser(
        "serve", help="Run the HTTP comparison server"
    )
    serve_parser.add_argument(
        "-H",
        "--host",
        type=str,
        default=DEFAULT_HOST,
        help=f"Address to listen on (default: {DEFAULT_HOST})",
    )
    serve_parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    serve_parser.add_argument(
        "--allow-local",
        action="store_true",
        help="Accept local file system paths in comparison requests",
    )
    _add_diff_args(serve_parser)
    serve_parser.set_defaults(func=_serve_cmd)


def main(args: List[str]) -> int:
    """
    Main entry point for storediff.

    Returns 0 if the compared snapshots are identical, 1 if they differ and
    2 on any error.
    """
    parser = ArgumentParser(
        description="Versioned store snapshot differ", prog=basename(args[0])
    )

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "--version",
        action="version",
        help="Report the version number of storediff",
        version=__version__,
    )
    # Subparser for command
    cmd_subparser = parser.add_subparsers(dest="command", help="Command")

    _add_compare_subparser(cmd_subparser)

    _add_show_subparser(cmd_subparser)

    _add_serve_subparser(cmd_subparser)

    # Usage errors exit with status 2 from parse_args()
    cmd_args = parser.parse_args(args[1:])

    status = EXIT_ERROR

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if "func" not in cmd_args:
        parser.print_help()
        return status

    try:
        status = cmd_args.func(cmd_args)
    except KeyboardInterrupt:  # pragma: no cover
        _log_info("Exiting on user cancel")
    except StoreDiffError as err:
        _log_error("Command failed: %s", err, exc_info=bool(cmd_args.debug))

    shutdown_logging()
    return status


def console_main():
    """
    Console script entry point.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :
