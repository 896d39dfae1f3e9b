"""Exception hierarchy for orgauth.

All exceptions inherit from :class:`OrgAuthError`, which carries two
stable attributes:

* ``name`` -- a short identifying label (``"PortConflict"``,
  ``"SocketTimeout"``, ...) that calling code can branch on instead of
  matching free-text messages.
* ``exit_code`` -- a constant from :mod:`orgauth.exit_codes` used by
  :func:`orgauth.app.main` when the error reaches the top level.

Subclass hierarchy::

    OrgAuthError (exit 1)
    +-- InvalidUsageError     (exit 2)
    +-- ConfigError           (exit 1)
    +-- AuthError             (exit 3)
    |   +-- StateValidationError
    |   +-- ExchangeError
    |   +-- CallbackError
    |   +-- InvalidRequestError
    +-- PortConflictError     (exit 6)
    +-- SocketTimeoutError    (exit 6)
    +-- PollTimeoutError      (exit 8)
    +-- PollCancelledError    (exit 130)
"""

from __future__ import annotations

from orgauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_TIMEOUT,
)


class OrgAuthError(Exception):
    """Base exception for all orgauth errors.

    Args:
        message: Human-readable error description printed to stderr.
        name: Optional override for the class-level ``name`` label.
        exit_code: Optional override for the class-level exit code.
    """

    name: str = "OrgAuthError"
    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(
        self,
        message: str,
        name: str | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        if name is not None:
            self.name = name
        if exit_code is not None:
            self.exit_code = exit_code

    @property
    def message(self) -> str:
        return str(self)


class InvalidUsageError(OrgAuthError):
    """Raised for invalid CLI arguments or an API used out of order."""

    name = "InvalidUsage"
    exit_code = EXIT_INVALID_USAGE


class ConfigError(OrgAuthError):
    """Raised for configuration problems (invalid JSON, unreadable files)."""

    name = "ConfigError"
    exit_code = EXIT_GENERIC_FAILURE


class AuthError(OrgAuthError):
    """Raised when the authorization attempt fails."""

    name = "AuthError"
    exit_code = EXIT_AUTH_FAILURE


class StateValidationError(AuthError):
    """Raised when the callback ``state`` does not match the one we issued.

    Either a stale browser tab or a cross-site request forgery attempt. The
    authorization code, if any, is never exchanged.
    """

    name = "StateValidationFailed"


class ExchangeError(AuthError):
    """Raised when the identity provider rejects the authorization code."""

    name = "ExchangeFailed"


class CallbackError(AuthError):
    """Raised when the provider redirects back with ``error`` parameters.

    ``name`` is the provider's ``error`` code (e.g. ``access_denied``).
    """

    name = "CallbackError"


class InvalidRequestError(AuthError):
    """Raised when the callback server receives a request it cannot handle."""

    name = "InvalidRequest"


class PortConflictError(OrgAuthError):
    """Raised when another process already listens on the callback port."""

    name = "PortConflict"
    exit_code = EXIT_CONNECTION_ERROR


class SocketTimeoutError(OrgAuthError):
    """Raised when no browser request reaches the callback server in time."""

    name = "SocketTimeout"
    exit_code = EXIT_CONNECTION_ERROR


class PollTimeoutError(OrgAuthError):
    """Raised when a :class:`~orgauth.status.polling_client.PollingClient` deadline passes.

    ``name`` is the ``timeout_error_name`` the client was configured with, so
    that composed pollers can be told apart.
    """

    name = "PollTimeout"
    exit_code = EXIT_TIMEOUT


class PollCancelledError(OrgAuthError):
    """Raised by ``subscribe()`` after :meth:`PollingClient.cancel` was called."""

    name = "PollCancelled"
    exit_code = EXIT_CANCELLED
