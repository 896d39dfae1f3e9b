"""Process exit codes of the ``orgauth`` command.

Every error category has its own code, set as ``exit_code`` on the
matching :class:`~orgauth.exceptions.OrgAuthError` subclass. Shell
wrappers can tell a port conflict from a rejected login by the exit code
alone.

Example::

    $ orgauth login
    $ echo $?
    6   # EXIT_CONNECTION_ERROR -- the callback port is held by another process
"""

EXIT_SUCCESS = 0
"""Login stored, or host resolved."""

EXIT_GENERIC_FAILURE = 1
"""Anything without a more specific code, including crashes."""

EXIT_INVALID_USAGE = 2
"""Bad flags or arguments, or an API called out of order."""

EXIT_AUTH_FAILURE = 3
"""Authorization failed (state mismatch, provider error, rejected code exchange)."""

EXIT_CONNECTION_ERROR = 6
"""A local network error occurred (port in use, browser never called back)."""

EXIT_TIMEOUT = 8
"""A polling operation did not complete before its deadline."""

EXIT_CANCELLED = 130
"""The operation was cancelled (mirrors the shell's SIGINT convention)."""
