"""``orgauth login`` -- authorize an org through the browser.

Typical workflow::

    orgauth login                                   # production login host
    orgauth login --login-url https://test.salesforce.com
    orgauth login --no-browser                      # print the URL only
"""

from __future__ import annotations

from typing import Optional

import typer

from orgauth.output import format_response, info, success, suggest


def login_command(
    login_url: Optional[str] = typer.Option(
        None, "--login-url", "-r", help="Login host (default: https://login.salesforce.com)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", "-i", help="Connected app consumer key."
    ),
    browser: bool = typer.Option(
        True, "--browser/--no-browser", help="Open the authorization URL automatically."
    ),
) -> None:
    """Log in through the browser and store the resulting credential.

    Starts a callback server on ``oauthLocalPort`` (project config) or
    1717, prints the authorization URL, and waits for the provider to
    redirect back. On success the credential is saved and its summary is
    written to stdout.

    Raises:
        PortConflictError: The callback port is in use.
        SocketTimeoutError: The browser never came back.
        AuthError: The login was rejected or tampered with.
    """
    from orgauth.config import resolve_oauth_config
    from orgauth.oauth import WebOAuthServer

    oauth_config = resolve_oauth_config(cli_login_url=login_url, cli_client_id=client_id)
    server = WebOAuthServer.create(oauth_config)

    def _show_url(url: str) -> None:
        info(f"Waiting for the browser on port {server.port}...")
        if browser:
            info(url)
        else:
            # Shown even with --quiet.
            typer.echo(f"Open this URL to log in:\n{url}", err=True)

    credential = server.login(open_browser=browser, on_url=_show_url)

    success(f"Successfully authorized {credential.username or credential.instance_url}.")
    format_response(
        {
            "username": credential.username,
            "orgId": credential.org_id,
            "instanceUrl": credential.instance_url,
            "loginUrl": credential.login_url,
        }
    )
    if credential.username is None:
        suggest("The identity service did not report a username; the credential was stored by org id.")
