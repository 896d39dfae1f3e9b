"""Exchange an authorization code for a :class:`~orgauth.auth.credential_store.Credential`.

:class:`IdentityExchanger` is the narrow contract
:class:`~orgauth.oauth.web_oauth.WebOAuthServer` depends on, so tests and
embedding applications can substitute their own implementation.
:class:`TokenExchanger` is the default, talking to the provider's
``/services/oauth2/token`` endpoint with httpx.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx

from orgauth.auth.credential_store import Credential
from orgauth.exceptions import ExchangeError
from orgauth.models import OAuthConfig

logger = logging.getLogger(__name__)


class IdentityExchanger(Protocol):
    """Turns an authorization code into a credential."""

    def exchange(
        self,
        auth_code: str,
        oauth_config: OAuthConfig,
        code_verifier: Optional[str] = None,
    ) -> Credential:
        ...


class TokenExchanger:
    """Default :class:`IdentityExchanger` backed by the OAuth2 token endpoint.

    After the code exchange, the identity service (the ``id`` URL in the
    token response) is queried for the username. A failed identity lookup
    is logged and leaves ``username`` empty; it does not fail the login.

    Args:
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def exchange(
        self,
        auth_code: str,
        oauth_config: OAuthConfig,
        code_verifier: Optional[str] = None,
    ) -> Credential:
        """POST the code to the token endpoint and build a credential.

        Raises:
            ExchangeError: On HTTP errors, network errors, or a response
                missing ``access_token`` / ``instance_url``.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": auth_code,
            "client_id": oauth_config.client_id,
        }
        if oauth_config.redirect_uri:
            data["redirect_uri"] = oauth_config.redirect_uri
        if oauth_config.client_secret:
            data["client_secret"] = oauth_config.client_secret
        if code_verifier:
            data["code_verifier"] = code_verifier

        logger.debug("Exchanging authorization code at %s", oauth_config.token_endpoint)
        try:
            response = httpx.post(
                oauth_config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise ExchangeError(_describe_error_response(exc.response)) from exc
        except httpx.HTTPError as exc:
            raise ExchangeError(f"Token exchange failed: {exc}") from exc
        except ValueError as exc:
            raise ExchangeError("Token endpoint returned a non-JSON response") from exc

        for required in ("access_token", "instance_url"):
            if required not in token_data:
                raise ExchangeError(f"Token response missing '{required}' field")

        credential = Credential(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            instance_url=token_data["instance_url"],
            id_url=token_data.get("id"),
            login_url=oauth_config.login_url,
            client_id=oauth_config.client_id,
            issued_at=_parse_issued_at(token_data.get("issued_at")),
        )
        if credential.id_url:
            credential.username = self._fetch_username(credential.id_url, credential.access_token)
        return credential

    def _fetch_username(self, id_url: str, access_token: str) -> Optional[str]:
        try:
            response = httpx.get(
                id_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
            username = response.json().get("username")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch identity from %s: %s", id_url, exc)
            return None
        return username if isinstance(username, str) else None


def _describe_error_response(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        description = body.get("error_description") or body["error"]
        return f"Token exchange rejected ({body['error']}): {description}"
    return f"Token exchange failed with status {response.status_code}: {response.text}"


def _parse_issued_at(value: Any) -> Optional[datetime]:  # noqa: ANN401
    """Parse the provider's ``issued_at`` (epoch milliseconds as a string)."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
