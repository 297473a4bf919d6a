# Copyright Red Hat
#
# storediff/progress.py - Store differ terminal control and progress
#
# This file is part of the storediff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Terminal control and progress indicator
"""
from typing import List, Optional, TextIO
from abc import ABC, abstractmethod
import curses
import sys
import os
import re

from storediff import register_progress, unregister_progress

#: Default number of columns if not detected from terminal.
DEFAULT_COLUMNS = 80

#: Minimum width of a progress bar.
PROGRESS_MIN_WIDTH = 10

#: Default width of a progress bar as a fraction of the terminal size.
DEFAULT_WIDTH_FRAC = 0.5


class TermControl:
    """
    Portable terminal control sequences for colored output.

    Each attribute holds the control sequence for one action, or the empty
    string if the terminal (or the ``color`` setting) does not support it, so
    that the attributes can always be concatenated into output unchanged:

        >>> tc = TermControl()
        >>> print("store " + tc.RED + "differs" + tc.NORMAL)

    The ``render()`` method expands ``${NAME}`` references in a template.
    """

    BOL: str = ""  #: Move the cursor to the beginning of the line
    UP: str = ""  #: Move the cursor up one line
    CLEAR_EOL: str = ""  #: Clear to the end of the line.
    BOLD: str = ""  #: Turn on bold mode
    NORMAL: str = ""  #: Turn off all modes
    HIDE_CURSOR: str = ""  #: Make the cursor invisible
    SHOW_CURSOR: str = ""  #: Make the cursor visible

    BLACK: str = ""  #: Black foreground color
    BLUE: str = ""  #: Blue foreground color
    GREEN: str = ""  #: Green foreground color
    CYAN: str = ""  #: Cyan foreground color
    RED: str = ""  #: Red foreground color
    MAGENTA: str = ""  #: Magenta foreground color
    YELLOW: str = ""  #: Yellow foreground color
    WHITE: str = ""  #: White foreground color

    columns: Optional[int] = None  #: Terminal width
    lines: Optional[int] = None  #: Terminal height

    _STRING_CAPABILITIES: List[str] = (
        "BOL:cr UP:cuu1 CLEAR_EOL:el BOLD:bold NORMAL:sgr0 "
        "HIDE_CURSOR:civis SHOW_CURSOR:cnorm"
    ).split()
    _ANSI_COLORS: List[str] = "BLACK RED GREEN YELLOW BLUE MAGENTA CYAN WHITE".split()

    def __init__(self, term_stream: Optional[TextIO] = None, color: str = "auto"):
        """
        Initialise terminal capabilities for ``term_stream``.

        :param term_stream: Output stream to probe for capabilities.
        :type term_stream: ``Optional[TextIO]``
        :param color: A string to control color rendering: "auto", "always", or
                      "never".
        :type color: ``str``
        """
        if term_stream is None:
            term_stream = sys.stdout

        self.term_stream = term_stream

        if color == "never":
            return

        if color != "always":
            if not hasattr(term_stream, "isatty") or not term_stream.isatty():
                return

        try:
            curses.setupterm()
        # curses.error cannot be named in an except clause on all builds.
        except BaseException as err:  # pylint: disable=broad-exception-caught
            if isinstance(err, (KeyboardInterrupt, SystemExit)):  # pragma: no cover
                raise
            if color == "always":
                self._force_ansi()
            return  # pragma: no cover

        self.columns = curses.tigetnum("cols")
        self.lines = curses.tigetnum("lines")

        for capability in self._STRING_CAPABILITIES:
            (attr, cap_name) = capability.split(":")
            setattr(self, attr, self._tigetstr(cap_name) or "")

        set_fg_ansi = self._tigetstr("setaf")
        if set_fg_ansi:
            set_fg_ansi = set_fg_ansi.encode("utf8")
            for i, name in enumerate(self._ANSI_COLORS):
                setattr(self, name, curses.tparm(set_fg_ansi, i).decode("utf8") or "")

    def _force_ansi(self):
        for i, name in enumerate(self._ANSI_COLORS):
            setattr(self, name, f"\033[0;{30 + i}m")
        # `less -R` handles a color reset better than "\033[0m".
        self.NORMAL = self.WHITE

    def _tigetstr(self, cap_name):
        # Strip padding delays of the form "$<2>".
        cap = curses.tigetstr(cap_name)
        cap = cap.decode(encoding="utf8") if cap else ""
        return cap.split("$", maxsplit=1)[0]

    def render(self, template):
        """
        Replace each ``${NAME}`` in ``template`` with the matching control
        sequence, or the empty string if it is undefined.

        :param template: Template string containing ${NAME} patterns.
        :type template: ``str``
        :returns: Rendered string with substitutions applied.
        :rtype: ``str``
        """
        return re.sub(r"\$\$|\${\w+}", self._render_sub, template)

    def _render_sub(self, match):
        s = match.group()
        if s == "$$":
            return "$"
        return getattr(self, s[2:-1], "")


def _flush_with_broken_pipe_guard(stream: TextIO) -> None:
    """
    Flush ``stream``, redirecting it to ``/dev/null`` and exiting if the
    reader went away.

    :param stream: The stream to flush.
    :type stream: TextIO
    """
    if stream is None or not hasattr(stream, "flush"):
        return
    try:
        stream.flush()
    except BrokenPipeError as err:
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            if hasattr(stream, "fileno"):
                os.dup2(devnull, stream.fileno())
        finally:
            os.close(devnull)
        raise SystemExit() from err


class ProgressBase(ABC):
    """
    An abstract progress reporting class.
    """

    #: Length of fixed characters in the bar format
    FIXED = -1

    def __init__(self, register: bool = True):
        self.total: int = 0
        self.header: Optional[str] = None
        self.term: Optional[TermControl] = None
        self.stream: Optional[TextIO] = None
        self.width: int = -1
        self.first_update: bool = True
        self.registered: bool = False
        self.register: bool = register

    def reset_position(self):
        """Mark progress bar as displaced by external output."""
        self.first_update = True

    def _calculate_width(self, width: Optional[int] = None) -> int:
        """
        Return the bar width in characters: ``width`` if given, otherwise a
        fraction of the terminal width left over after the header.

        :param width: An optional fixed width in characters.
        :type width: ``Optional[int]``
        :returns: The bar width.
        :rtype: ``int``
        """
        if self.FIXED < 0 or self.header is None:
            raise ValueError(
                f"{self.__class__.__name__}: FIXED and header must be set "
                "before calculating the bar width"
            )
        if width is not None:
            return width
        columns = getattr(self.term, "columns", None) or DEFAULT_COLUMNS
        width = round((columns - self.FIXED - len(self.header)) * DEFAULT_WIDTH_FRAC)
        return max(PROGRESS_MIN_WIDTH, width)

    def start(self, total: int):
        """
        Begin a progress run with the specified ``total``.

        :param total: The total number of expected progress items.
        :type total: ``int``
        """
        if total <= 0:
            raise ValueError("total must be positive.")

        self.total = total

        if self.register:
            register_progress(self)

        self._do_start()

    @abstractmethod
    def _do_start(self):
        """Hook invoked when progress begins."""

    def _check_in_progress(self, done: int, step: str):
        theclass = self.__class__.__name__
        if self.total == 0:
            raise ValueError(f"{theclass}.{step}() called before start()")

        if done < 0:
            raise ValueError(f"{theclass}.{step}() done cannot be negative.")

        if done > self.total:
            raise ValueError(f"{theclass}.{step}() done cannot be > total.")

    def progress(self, done: int, message: Optional[str] = None):
        """
        Advance the progress indicator to the specified ``done`` count.

        :param done: The number of completed progress items.
        :type done: ``int``
        :param message: An optional progress message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(done, "progress")
        self._do_progress(done, message)

    @abstractmethod
    def _do_progress(self, done: int, message: Optional[str] = None):
        """Hook for subclasses to update the progress display."""

    def end(self, message: Optional[str] = None):
        """
        End the progress run and finalise the display.

        :param message: An optional completion message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(self.total, "end")
        self.progress(self.total, "")
        self._do_end(message)
        self.total = 0
        if self.registered:
            unregister_progress(self)

    @abstractmethod
    def _do_end(self, message: Optional[str] = None):
        """Hook for final end-of-progress handling."""

    def cancel(self, message: Optional[str] = None):
        """
        End the progress run with an error.

        :param message: An optional error message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(self.total, "cancel")
        self._do_end(message=message)
        self.total = 0
        if self.registered:
            unregister_progress(self)


class Progress(ProgressBase):
    """
    A single line progress bar redrawn in place on a capable terminal:

        Comparing stores:  40% [========------------] bank
    """

    BAR = "${BOLD}${CYAN}%s${NORMAL}: %3d%% ${GREEN}[%s%s]${NORMAL} %s"
    FIXED = 9

    def __init__(
        self,
        header,
        register: bool = True,
        width: Optional[int] = None,
        tc: Optional[TermControl] = None,
    ):
        super().__init__(register=register)
        self.header: Optional[str] = header
        self.term: Optional[TermControl] = tc or TermControl()
        self.stream: Optional[TextIO] = self.term.term_stream

        if not (self.term.CLEAR_EOL and self.term.BOL):
            raise ValueError("Terminal does not support required control characters.")

        self.width: int = self._calculate_width(width=width)
        self.pbar: Optional[str] = None

    def _do_start(self):
        self.pbar = self.term.render(self.BAR)
        self.first_update = True

    def _do_progress(self, done: int, message: Optional[str] = None):
        percent = float(done) / float(self.total)
        n = int(self.width * percent)
        prefix = self.term.BOL + self.term.CLEAR_EOL
        if self.first_update:
            prefix = self.term.HIDE_CURSOR + prefix
            self.first_update = False
        print(
            prefix
            + self.pbar
            % (self.header, percent * 100, "=" * n, "-" * (self.width - n), message or ""),
            file=self.stream,
            end="",
        )
        _flush_with_broken_pipe_guard(self.stream)

    def _do_end(self, message: Optional[str] = None):
        print(
            self.term.BOL + self.term.CLEAR_EOL + self.term.SHOW_CURSOR + self.term.NORMAL,
            file=self.stream,
            end="",
        )
        if message:
            print(message, file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)


class SimpleProgress(ProgressBase):
    """
    A line-per-update progress report that needs no terminal capabilities.
    """

    BAR = "%s: %3d%% [%s%s] (%s)"  #: Progress bar format string
    DID = "="  #: Bar character for completed work.
    TODO = "-"  #: Bar character for uncompleted work.
    FIXED = 12  #: Length of fixed characters in BAR.

    def __init__(
        self,
        header,
        register: bool = True,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
    ):
        super().__init__(register=register)
        self.header: Optional[str] = header
        self.stream: Optional[TextIO] = term_stream or sys.stdout
        self.width: int = self._calculate_width(width=width)

    def _do_start(self):
        return

    def _do_progress(self, done: int, message: Optional[str] = None):
        percent = float(done) / float(self.total)
        n = int(self.width * percent)
        print(
            self.BAR
            % (
                self.header,
                percent * 100,
                self.DID * n,
                self.TODO * (self.width - n),
                message or "",
            ),
            file=self.stream,
        )
        _flush_with_broken_pipe_guard(self.stream)

    def _do_end(self, message: Optional[str] = None):
        if message:
            print(message, file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)


class NullProgress(ProgressBase):
    """
    A progress class that produces no output.
    """

    def _do_start(self):
        return  # pragma: no cover

    def _do_progress(self, done: int, message: Optional[str] = None):
        return  # pragma: no cover

    def _do_end(self, message: Optional[str] = None):
        return  # pragma: no cover


class ProgressFactory:
    """
    A factory for constructing progress objects.
    """

    @staticmethod
    def get_progress(
        header: str,
        quiet: bool = False,
        term_stream: Optional[TextIO] = None,
        term_control: Optional[TermControl] = None,
        width: Optional[int] = None,
        register: bool = True,
    ) -> ProgressBase:
        """
        Return an appropriate ``ProgressBase`` implementation for the output
        stream.

        :param header: The progress report header.
        :type header: ``str``
        :param quiet: Suppress all output.
        :type quiet: ``bool``
        :param term_stream: An optional output stream. Defaults to
                            ``sys.stdout`` if unspecified.
        :type term_stream: ``Optional[TextIO]``
        :param term_control: An optional ``TermControl`` to use. Its stream
                             overrides ``term_stream``.
        :type term_control: ``Optional[TermControl]``
        :param width: An optional fixed bar width in characters.
        :type width: ``Optional[int]``
        :param register: Register the new object for log notifications.
        :type register: ``bool``
        :returns: An appropriate progress implementation.
        :rtype: ``ProgressBase``
        """
        if term_control:
            term_stream = term_control.term_stream

        term_stream = term_stream or sys.stdout
        if quiet:
            return NullProgress(register=register)
        if not hasattr(term_stream, "isatty") or not term_stream.isatty():
            return SimpleProgress(
                header, register=register, term_stream=term_stream, width=width
            )
        try:
            return Progress(
                header,
                register=register,
                width=width,
                tc=term_control or TermControl(term_stream=term_stream),
            )
        except ValueError:
            return SimpleProgress(
                header, register=register, term_stream=term_stream, width=width
            )


__all__ = [
    "NullProgress",
    "Progress",
    "ProgressBase",
    "ProgressFactory",
    "SimpleProgress",
    "TermControl",
]
