"""The ``orgauth`` command line.

``orgauth login`` runs the browser login; ``orgauth resolve`` waits for a
host name to appear in DNS. Global flags choose the output format and
verbosity for whichever command follows.

:func:`run` executes the CLI and turns every outcome into an exit code:
:class:`~orgauth.exceptions.OrgAuthError` subclasses carry their own, and
anything unexpected is written to a crash log under the data directory.
:func:`main` is the console-script entry point.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import click
import typer

from orgauth import __version__
from orgauth.commands.login import login_command
from orgauth.commands.resolve import resolve_command
from orgauth.exceptions import OrgAuthError, PortConflictError, SocketTimeoutError
from orgauth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE
from orgauth.output import OutputFormat, OutputManager, configure_logging, error, set_output, suggest

app = typer.Typer(
    name="orgauth",
    help="Log in to an org through the browser and check that its domain resolves.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

app.command("login")(login_command)
app.command("resolve")(resolve_command)

# Shown after the error line for failures the user can fix themselves.
_HINTS: dict[type[OrgAuthError], str] = {
    PortConflictError: "Free the port or set 'oauthLocalPort' in orgauth-project.json.",
    SocketTimeoutError: (
        "Run the login again and finish it in the browser, "
        "or raise ORGAUTH_HTTP_SOCKET_TIMEOUT (milliseconds)."
    ),
}


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"orgauth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Print the version and exit."
    ),
    json_output: bool = typer.Option(False, "--json", help="Write results as JSON."),
    plain_output: bool = typer.Option(False, "--plain", help="Write results as tab-separated text."),
    no_color: bool = typer.Option(False, "--no-color", help="Never use colour."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print results, warnings and errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug detail to stderr."),
) -> None:
    """Set up output and logging for the command that follows."""
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(output)


def _install_sigint_handler() -> None:
    def _on_sigint(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _on_sigint)


def _write_crash_log() -> str:
    """Save the traceback being handled and return the log's path."""
    from orgauth.config import get_data_dir

    log_dir = get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text(traceback.format_exc(), encoding="utf-8")
    return str(log_path)


def run(args: Optional[list[str]] = None) -> int:
    """Run the CLI with *args* (default: ``sys.argv[1:]``) and return the exit code."""
    try:
        result = app(args=args, standalone_mode=False)
    except typer.Abort:
        sys.stderr.write("\nCancelled.\n")
        return EXIT_CANCELLED
    except OrgAuthError as exc:
        error(f"{exc} ({exc.name})")
        hint = next((text for kind, text in _HINTS.items() if isinstance(exc, kind)), None)
        if hint:
            suggest(hint)
        return exc.exit_code
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except Exception:  # noqa: BLE001
        error(f"Unexpected error. Details were written to {_write_crash_log()}")
        return EXIT_GENERIC_FAILURE
    # Without standalone mode, typer.Exit comes back as its exit code.
    return result if isinstance(result, int) else 0


def main() -> None:
    """Entry point of the ``orgauth`` console script."""
    _install_sigint_handler()
    sys.exit(run())
