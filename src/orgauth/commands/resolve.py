"""``orgauth resolve`` -- wait until a host name resolves through DNS."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer

from orgauth.output import debug, format_response


def resolve_command(
    url: Optional[str] = typer.Argument(
        None, help="URL or host to resolve (default: https://login.salesforce.com)."
    ),
    timeout: float = typer.Option(30.0, "--timeout", "-t", min=0.001, help="Seconds to keep trying."),
    frequency: float = typer.Option(
        10.0, "--frequency", "-f", min=0.001, help="Seconds between lookups."
    ),
) -> None:
    """Poll DNS until *url*'s host resolves, then print its address.

    Useful right after creating an org whose My Domain host has not
    propagated yet.

    Raises:
        PollTimeoutError: Named ``MyDomainResolverTimeoutError`` when the
            host never resolves within ``--timeout``.
    """
    from orgauth.status import MyDomainResolver

    resolver = MyDomainResolver(url, timeout=timeout, frequency=frequency)
    debug(f"Resolving {resolver.host} (timeout {timeout:g}s, every {frequency:g}s)")
    address = asyncio.run(resolver.resolve())
    format_response({"host": resolver.host, "address": address})
