"""Wait for a host name to become resolvable.

A freshly provisioned org's My Domain host may take minutes to propagate
through DNS. :class:`MyDomainResolver` keeps looking the host up through a
:class:`~orgauth.status.polling_client.PollingClient` until it resolves or
the timeout (label ``MyDomainResolverTimeoutError``) fires. Nothing here is
specific to My Domain; any URL works.

Example::

    resolver = MyDomainResolver("https://acme.my.salesforce.com", timeout=300, frequency=10)
    address = asyncio.run(resolver.resolve())
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from orgauth.exceptions import InvalidUsageError
from orgauth.models import PollConfig, PollResult
from orgauth.status.polling_client import PollingClient

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "https://login.salesforce.com"
TIMEOUT_ERROR_NAME = "MyDomainResolverTimeoutError"
DEFAULT_TIMEOUT = 30.0
DEFAULT_FREQUENCY = 10.0

# Internal hosts never resolve through public DNS.
_INTERNAL_DOMAIN_MARKER = ".internal.salesforce.com"
_LOOPBACK_ADDRESS = "127.0.0.1"

Lookup = Callable[[str], Awaitable[str]]


async def dns_lookup(host: str) -> str:
    """Return the first address *host* resolves to."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    if not infos:
        raise socket.gaierror(socket.EAI_NONAME, f"No address found for {host}")
    return str(infos[0][4][0])


class MyDomainResolver:
    """Resolve the host of *url*, retrying until DNS has caught up.

    Args:
        url: URL (or bare host name) to resolve. Defaults to
            :data:`DEFAULT_DOMAIN`.
        timeout: Seconds to keep trying.
        frequency: Seconds between lookups.
        lookup: Coroutine function performing a single lookup. Defaults
            to :func:`dns_lookup`.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        frequency: float = DEFAULT_FREQUENCY,
        lookup: Optional[Lookup] = None,
    ) -> None:
        raw = url or DEFAULT_DOMAIN
        parsed = urlparse(raw if "://" in raw else f"https://{raw}")
        if not parsed.hostname:
            raise InvalidUsageError(f"Cannot determine a host name from '{raw}'")
        self._host = parsed.hostname
        self._config = PollConfig(
            timeout=timeout,
            frequency=frequency,
            timeout_error_name=TIMEOUT_ERROR_NAME,
        )
        self._lookup = lookup or dns_lookup
        self._client: Optional[PollingClient] = None

    @property
    def host(self) -> str:
        return self._host

    async def resolve(self) -> str:
        """Return the resolved IP address of the host.

        Raises:
            PollTimeoutError: With ``name == "MyDomainResolverTimeoutError"``
                if the host never resolves within the timeout.
        """
        self._client = PollingClient(self._probe, self._config)
        address = await self._client.subscribe()
        return str(address)

    def cancel(self) -> None:
        if self._client is not None:
            self._client.cancel()

    async def _probe(self) -> PollResult:
        host = self._host
        logger.debug("Attempting to resolve host: %s", host)
        if _INTERNAL_DOMAIN_MARKER in host:
            return PollResult(completed=True, payload=_LOOPBACK_ADDRESS)
        try:
            address = await self._lookup(host)
        except OSError as exc:
            logger.debug("Could not resolve %s: %s; retrying", host, exc)
            return PollResult(completed=False)
        logger.debug("Resolved host %s to %s", host, address)
        return PollResult(completed=True, payload=address)
