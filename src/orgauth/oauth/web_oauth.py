"""OAuth2 web-server flow against a local callback listener.

:class:`WebOAuthServer` runs one browser login attempt:

1. :meth:`~WebOAuthServer.determine_oauth_port` picks the callback port
   (project ``oauthLocalPort`` or :attr:`~WebOAuthServer.DEFAULT_PORT`).
2. :meth:`~WebOAuthServer.start` binds the :class:`~orgauth.oauth.web_server.WebServer`.
3. :meth:`~WebOAuthServer.get_authorization_url` returns the URL to open,
   carrying a fresh ``state`` (and a PKCE ``code_challenge``).
4. :meth:`~WebOAuthServer.authorize_and_save` waits for the redirect,
   checks ``state``, exchanges the code through an
   :class:`~orgauth.auth.identity.IdentityExchanger`, saves the credential,
   and sends the browser on to the org's front-door URL with a 303.

Every failure after the browser has reached the callback still produces a
response (an error page or status), and the listener is closed on every
path out of :meth:`~WebOAuthServer.authorize_and_save`.

Example::

    server = WebOAuthServer.create(OAuthConfig(login_url="https://test.salesforce.com"))
    credential = server.login()
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import threading
import webbrowser
from typing import Any, Callable, Optional
from urllib.parse import urlencode, urlparse

from orgauth.auth.credential_store import Credential
from orgauth.auth.identity import IdentityExchanger, TokenExchanger
from orgauth.config import ProjectConfig
from orgauth.env import Env
from orgauth.exceptions import (
    CallbackError,
    ExchangeError,
    InvalidRequestError,
    InvalidUsageError,
    OrgAuthError,
    StateValidationError,
)
from orgauth.models import CALLBACK_PATH, DEFAULT_OAUTH_PORT, OAuthConfig, ServerConfig
from orgauth.oauth.web_server import CallbackRequest, CallbackResponse, WebServer

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from the unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def _as_port(value: Any) -> Optional[int]:  # noqa: ANN401
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        return None
    return port if 0 <= port <= 65535 else None


class WebOAuthServer:
    """Coordinates one OAuth2 authorization-code login through the browser.

    Prefer :meth:`create`, which resolves the callback port from project
    configuration.

    Args:
        oauth_config: Provider and client settings. ``redirect_uri`` is
            derived from *port* when empty.
        port: Callback port to bind.
        exchanger: Collaborator that turns the code into a credential.
        env: Environment reader, passed to the :class:`WebServer`.
    """

    DEFAULT_PORT = DEFAULT_OAUTH_PORT
    PORT_CONFIG_KEY = "oauthLocalPort"

    def __init__(
        self,
        oauth_config: Optional[OAuthConfig] = None,
        port: int = DEFAULT_OAUTH_PORT,
        exchanger: Optional[IdentityExchanger] = None,
        env: Optional[Env] = None,
    ) -> None:
        self._oauth_config = (oauth_config or OAuthConfig()).model_copy(deep=True)
        self._derived_redirect = not self._oauth_config.redirect_uri
        if self._derived_redirect:
            self._oauth_config.redirect_uri = _redirect_uri_for(port)
        self._exchanger: IdentityExchanger = exchanger or TokenExchanger()
        self._web_server = WebServer(ServerConfig(port=port), env=env)
        self._state: Optional[str] = None
        self._auth_url: Optional[str] = None
        self._code_verifier: Optional[str] = None
        self._code_challenge: Optional[str] = None
        if self._oauth_config.use_pkce:
            self._code_verifier, self._code_challenge = generate_pkce_pair()
        self.url_state_mismatch_attempt = False

    @classmethod
    def create(
        cls,
        oauth_config: Optional[OAuthConfig] = None,
        exchanger: Optional[IdentityExchanger] = None,
        env: Optional[Env] = None,
        project: Optional[ProjectConfig] = None,
    ) -> WebOAuthServer:
        """Build a server bound (once started) to :meth:`determine_oauth_port`."""
        port = cls.determine_oauth_port(project)
        return cls(oauth_config, port=port, exchanger=exchanger, env=env)

    @classmethod
    def determine_oauth_port(cls, project: Optional[ProjectConfig] = None) -> int:
        """Return the project's ``oauthLocalPort`` if it is a valid port, else :attr:`DEFAULT_PORT`."""
        project = project or ProjectConfig()
        configured = project.get(cls.PORT_CONFIG_KEY)
        port = _as_port(configured)
        if port is not None:
            return port
        if configured is not None:
            logger.warning(
                "Ignoring invalid %s value %r; using port %d",
                cls.PORT_CONFIG_KEY,
                configured,
                cls.DEFAULT_PORT,
            )
        return cls.DEFAULT_PORT

    @property
    def oauth_config(self) -> OAuthConfig:
        return self._oauth_config

    @property
    def web_server(self) -> WebServer:
        return self._web_server

    @property
    def port(self) -> int:
        return self._web_server.port

    def start(self) -> int:
        """Bind the callback listener and return its port.

        Raises:
            PortConflictError: The port is held by another process.
        """
        port = self._web_server.start()
        if self._derived_redirect and self._oauth_config.redirect_uri != _redirect_uri_for(port):
            # An ephemeral port (0) was requested; the URL must name the real one.
            self._oauth_config.redirect_uri = _redirect_uri_for(port)
            self._auth_url = None
        return port

    def get_authorization_url(self) -> str:
        """Return the provider authorization URL for this attempt.

        The ``state`` parameter is generated on the first call and kept for
        :meth:`validate_state`; later calls on the same instance return the
        same state.
        """
        if self._state is None:
            self._state = secrets.token_hex(32)
        if self._auth_url is None:
            params: dict[str, str] = {
                "response_type": "code",
                "client_id": self._oauth_config.client_id,
                "redirect_uri": self._oauth_config.redirect_uri or "",
                "state": self._state,
            }
            if self._oauth_config.scopes:
                params["scope"] = " ".join(self._oauth_config.scopes)
            if self._code_challenge:
                params["code_challenge"] = self._code_challenge
                params["code_challenge_method"] = "S256"
            self._auth_url = f"{self._oauth_config.authorize_endpoint}?{urlencode(params)}"
        return self._auth_url

    def validate_state(self, request: CallbackRequest) -> bool:
        """Return True only if the request's ``state`` equals the one we issued."""
        received = request.query.get("state")
        if not received or self._state is None:
            return False
        return secrets.compare_digest(received.encode("utf-8"), self._state.encode("utf-8"))

    def close_request(self, request: CallbackRequest) -> None:
        request.close()

    def parse_auth_code_from_request(
        self, response: CallbackResponse, request: CallbackRequest
    ) -> Optional[str]:
        """Return the authorization code, or ``None`` after answering the browser with 400."""
        if not self.validate_state(request):
            self._web_server.send_error(
                400, "Invalid request parameters: state does not match.", response
            )
            self.close_request(request)
            logger.warning("Callback state did not match this login attempt; request rejected.")
            self.url_state_mismatch_attempt = True
            return None

        code = request.query.get("code")
        if not code:
            self._web_server.send_error(
                400, "Invalid request parameters: missing authorization code.", response
            )
            self.close_request(request)
            return None
        return code

    def authorize_and_save(self) -> Credential:
        """Wait for the redirect, exchange the code, save and return the credential.

        Raises:
            SocketTimeoutError: The browser never reached the callback.
            StateValidationError: ``state`` was missing or did not match.
            CallbackError: The provider redirected back with an error.
            InvalidRequestError: Wrong path or method, or no code.
            ExchangeError: The identity exchange (or saving) failed.
            InvalidUsageError: :meth:`start` was not called.
        """
        if not self._web_server.is_listening:
            raise InvalidUsageError("WebOAuthServer.start() must be called before authorize_and_save()")
        logger.debug("OAuth web login service listening on port: %d", self.port)
        try:
            request, response = self._execute_oauth_request()
            auth_code = self.parse_auth_code_from_request(response, request)
            if auth_code is None:
                if self.url_state_mismatch_attempt:
                    raise StateValidationError(
                        "The state parameter of the login callback does not match this "
                        "login attempt. Start the login again from this terminal."
                    )
                raise InvalidRequestError("The login callback did not include an authorization code")

            try:
                credential = self._exchanger.exchange(
                    auth_code, self._oauth_config, self._code_verifier
                )
                credential.save()
                self._web_server.do_redirect(303, credential.get_front_door_url(), response)
            except Exception as exc:
                error = exc if isinstance(exc, OrgAuthError) else ExchangeError(str(exc))
                self._web_server.report_error(error, response)
                if error is exc:
                    raise
                raise error from exc
            return credential
        finally:
            logger.debug("Closing callback server connection")
            self._web_server.close()

    def login(
        self,
        open_browser: bool = True,
        on_url: Optional[Callable[[str], None]] = None,
    ) -> Credential:
        """Run the whole attempt: start, show/open the URL, then :meth:`authorize_and_save`."""
        try:
            self.start()
        except BaseException:
            self._web_server.close()
            raise
        url = self.get_authorization_url()
        if on_url is not None:
            on_url(url)
        if open_browser:
            # webbrowser.open can block on some platforms.
            threading.Thread(target=webbrowser.open, args=(url,), daemon=True).start()
        return self.authorize_and_save()

    def _execute_oauth_request(self) -> tuple[CallbackRequest, CallbackResponse]:
        request, response = self._web_server.receive_request()
        logger.debug("Processing request for uri: %s", request.path)

        if request.method != "GET":
            self._web_server.send_error(405, "Unsupported http methods", response)
            raise InvalidRequestError(f"Invalid request method: {request.method}")

        expected_path = urlparse(self._oauth_config.redirect_uri or "").path or CALLBACK_PATH
        if request.path.rstrip("/") != expected_path.rstrip("/"):
            self._web_server.send_error(404, "Resource not found", response)
            raise InvalidRequestError(f"Invalid request uri: {request.path}")

        provider_error = request.query.get("error")
        if provider_error:
            error = CallbackError(
                request.query.get("error_description") or provider_error,
                name=provider_error,
            )
            self._web_server.report_error(error, response)
            raise error

        return request, response


def _redirect_uri_for(port: int) -> str:
    return f"http://localhost:{port}{CALLBACK_PATH}"
