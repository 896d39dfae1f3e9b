"""orgauth -- browser-based OAuth2 login for orgs from the command line.

Runs the OAuth2 web-server (authorization code) flow against a short-lived
loopback listener, exchanges the code for tokens, and stores the resulting
credential. Also ships a generic polling client and a DNS readiness check
built on it.

Typical workflow::

    orgauth login --login-url https://test.salesforce.com
    orgauth resolve https://acme.my.salesforce.com --timeout 300

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and project file access.
    exceptions: Exception hierarchy with labels and exit codes.
    oauth: Local callback server and login flow.
    status: Polling client and DNS resolver.
"""

__version__ = "0.1.0"
