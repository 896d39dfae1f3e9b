"""Canonical Pydantic models shared across orgauth modules.

The models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config
directory or read from the project file:
    :class:`GlobalConfig`, :class:`OAuthConfig`.

**Local server models** -- settle how the callback listener binds and how
long it waits:
    :class:`ServerConfig`.

**Polling models** -- consumed by
:class:`~orgauth.status.polling_client.PollingClient`:
    :class:`PollConfig`, :class:`PollResult`.

All models use Pydantic v2.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_CLIENT_ID = "PlatformCLI"
DEFAULT_OAUTH_PORT = 1717
# Longest client socket timeout, in milliseconds, that a blocking wait accepts.
MAX_CLIENT_SOCKET_TIMEOUT = int(threading.TIMEOUT_MAX * 1000)
DEFAULT_SCOPES = ["refresh_token", "api", "web"]
CALLBACK_PATH = "/OauthRedirect"


# --- Configuration ---


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/orgauth/config.json``.

    Written by the user and read by
    :func:`~orgauth.config.load_global_config`. Fields here have the lowest
    precedence; see :func:`~orgauth.config.resolve_oauth_config`.
    """

    login_url: Optional[str] = None
    client_id: Optional[str] = None


class OAuthConfig(BaseModel):
    """Parameters of one web-server OAuth attempt.

    ``redirect_uri`` is normally left empty and filled in by
    :class:`~orgauth.oauth.web_oauth.WebOAuthServer` once the callback
    port is known.

    Example::

        OAuthConfig(login_url="https://test.salesforce.com", client_id="MyApp")
    """

    login_url: str = DEFAULT_LOGIN_URL
    client_id: str = DEFAULT_CLIENT_ID
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    use_pkce: bool = True

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.login_url.rstrip('/')}/services/oauth2/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.login_url.rstrip('/')}/services/oauth2/token"


# --- Local server ---


class ServerConfig(BaseModel):
    """Immutable settings for :class:`~orgauth.oauth.web_server.WebServer`.

    ``port`` is the requested port; when ``None`` the server binds
    ``default_port``. ``client_socket_timeout`` is in milliseconds; when
    ``None`` the server resolves it from the environment.
    """

    model_config = ConfigDict(frozen=True)

    port: Optional[int] = Field(default=None, ge=0, le=65535)
    default_port: int = Field(default=DEFAULT_OAUTH_PORT, ge=0, le=65535)
    host: str = "localhost"
    client_socket_timeout: Optional[int] = Field(default=None, gt=0, le=MAX_CLIENT_SOCKET_TIMEOUT)

    @property
    def effective_port(self) -> int:
        return self.default_port if self.port is None else self.port


# --- Polling ---


class PollResult(BaseModel):
    """Outcome of a single probe.

    ``completed=False`` means "not yet", never failure. Such results carry
    no payload; one passed anyway is dropped.
    """

    completed: bool
    payload: Any = None

    @model_validator(mode="after")
    def _drop_incomplete_payload(self) -> PollResult:
        if not self.completed:
            self.payload = None
        return self


class PollConfig(BaseModel):
    """Timing for a :class:`~orgauth.status.polling_client.PollingClient`.

    Durations are in seconds. A ``frequency`` larger than ``timeout`` is
    allowed but yields a single attempt.
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(gt=0, description="Overall deadline in seconds")
    frequency: float = Field(gt=0, description="Pause between attempts in seconds")
    timeout_error_name: str = Field(
        default="PollingClientTimeout",
        min_length=1,
        description="Label carried by the timeout error",
    )
