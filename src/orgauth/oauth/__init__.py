"""Browser-based OAuth2 login through a loopback callback server."""

from orgauth.oauth.web_oauth import WebOAuthServer, generate_pkce_pair
from orgauth.oauth.web_server import CallbackRequest, CallbackResponse, WebServer

__all__ = [
    "CallbackRequest",
    "CallbackResponse",
    "WebOAuthServer",
    "WebServer",
    "generate_pkce_pair",
]
