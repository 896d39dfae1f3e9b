"""Terminal output for the orgauth CLI.

Two streams, two audiences:

* **stdout** carries the result of a command (the login summary, a
  resolved address) and nothing else, so it can be piped into ``jq`` or a
  script.
* **stderr** carries everything meant for the person at the keyboard:
  the authorization URL, progress, warnings, errors and next-step hints.

The result is rendered as JSON (``--json``), tab-separated ``key value``
lines (``--plain``, or whenever stdout is not a terminal), or highlighted
JSON via Rich on an interactive terminal. ``NO_COLOR``, ``TERM=dumb`` and
``--no-color`` turn colour off everywhere.

Library modules never print; they log to ``orgauth.*`` loggers, and
:func:`configure_logging` routes those records to stderr, at DEBUG when
``--verbose`` is given.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax

_LOGGER_NAME = "orgauth"


class OutputFormat(str, Enum):
    """How command results are written to stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Writes command results to stdout and diagnostics to stderr.

    Args:
        format: Result format. ``AUTO`` picks ``RICH`` for a colour-capable
            terminal and ``PLAIN`` otherwise.
        no_color: Never emit colour or styling.
        quiet: Drop ``info``, ``success`` and ``suggest`` messages.
            Warnings and errors are always shown.
        verbose: Show ``debug`` messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        if format != OutputFormat.AUTO:
            self._format = format
        elif _is_tty() and not self._no_color:
            self._format = OutputFormat.RICH
        else:
            self._format = OutputFormat.PLAIN

        rich_results = self._format == OutputFormat.RICH
        self._stdout = Console(file=sys.stdout, no_color=self._no_color, force_terminal=rich_results)
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        return self._stderr

    # -- results (stdout) ------------------------------------------------

    def format_response(self, data: Any) -> None:
        """Write a command result to stdout in the active format."""
        if self._format == OutputFormat.PLAIN:
            for line in _plain_lines(data):
                self.print_data(line)
            return
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format == OutputFormat.JSON:
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def print_data(self, text: str) -> None:
        sys.stdout.write(f"{text}\n")
        sys.stdout.flush()

    # -- diagnostics (stderr) --------------------------------------------

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, style="green")

    def warning(self, message: str) -> None:
        self._emit(message, label="Warning:", label_style="yellow")

    def error(self, message: str) -> None:
        self._emit(message, label="Error:", label_style="bold red")

    def suggest(self, message: str) -> None:
        """Show a next-step hint, e.g. which setting to change after a failure."""
        if not self._quiet:
            self._emit(f"→ {message}", style="dim")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._emit(f"[debug] {message}", style="dim")

    def _emit(
        self,
        message: str,
        style: Optional[str] = None,
        label: str = "",
        label_style: Optional[str] = None,
    ) -> None:
        """Write one diagnostic line to stderr.

        Messages are escaped before styling: provider error labels and URLs
        routinely contain square brackets that Rich would read as markup.
        """
        if self._no_color:
            line = f"{label} {message}" if label else message
            sys.stderr.write(f"{line}\n")
            sys.stderr.flush()
            return
        body = escape(message)
        if style:
            body = f"[{style}]{body}[/{style}]"
        if label:
            body = f"[{label_style}]{label}[/{label_style}] {body}"
        self._stderr.print(body)


def _plain_lines(data: Any) -> list[str]:
    if isinstance(data, dict):
        return [f"{key}\t{value}" for key, value in data.items()]
    if isinstance(data, list):
        return [str(item) for item in data]
    return [str(data)]


def _is_tty() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _should_disable_color() -> bool:
    """``NO_COLOR`` set to anything (even empty), or ``TERM=dumb``."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def configure_logging(output: OutputManager) -> None:
    """Send ``orgauth.*`` log records to stderr.

    Uses a :class:`~rich.logging.RichHandler` on the Rich console in RICH
    mode and a plain ``LEVEL name: message`` stream handler otherwise. The
    level is DEBUG when *output* is verbose and WARNING otherwise. Calling
    this again replaces the handler installed by the previous call.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    stale = [h for h in logger.handlers if getattr(h, "_orgauth_handler", False)]
    for old in stale:
        logger.removeHandler(old)

    handler: logging.Handler
    if output.format == OutputFormat.RICH:
        handler = RichHandler(console=output.stderr_console, show_path=False)
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._orgauth_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if output.is_verbose else logging.WARNING)


# -- process-wide instance -------------------------------------------------

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the manager installed by the CLI, or a default one."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def debug(message: str) -> None:
    get_output().debug(message)
