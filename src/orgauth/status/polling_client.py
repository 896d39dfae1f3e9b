"""Retry an arbitrary check until it reports completion or a deadline passes.

:class:`PollingClient` drives a *probe* -- any callable returning a
:class:`~orgauth.models.PollResult` -- on a single asyncio timeline:

1. The first probe fires immediately.
2. ``completed=True`` resolves :meth:`PollingClient.subscribe` with the
   payload; no further probes run.
3. ``completed=False`` schedules the next probe ``frequency`` seconds
   after the previous one *returned*, so probes never overlap.
4. The deadline is checked before every probe. When the remaining budget
   is no larger than the pause, the client waits out the deadline and
   raises :class:`~orgauth.exceptions.PollTimeoutError` labelled with
   ``timeout_error_name``.

Probes are expected to swallow their own transient failures and report
``completed=False``. An exception escaping a probe is treated as a defect
and ends the subscription.

Example::

    async def probe() -> PollResult:
        return PollResult(completed=await job_is_done(), payload="done")

    client = PollingClient(probe, PollConfig(timeout=60, frequency=5))
    payload = await client.subscribe()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

from orgauth.exceptions import InvalidUsageError, PollCancelledError, PollTimeoutError
from orgauth.models import PollConfig, PollResult

logger = logging.getLogger(__name__)

ProbeResult = Union[PollResult, dict[str, Any]]
Probe = Callable[[], Union[ProbeResult, Awaitable[ProbeResult]]]


class PollingClient:
    """Poll *probe* according to *config* until it completes.

    Plain (blocking) probes run in a worker thread via
    :func:`asyncio.to_thread`; ``async def`` probes are awaited on the
    running loop. Either may return a :class:`PollResult` or an equivalent
    dict.

    Args:
        probe: The check to run on every attempt.
        config: Timeout, pause, and timeout label.
        clock: Monotonic clock in seconds. Overridable for tests.
    """

    def __init__(
        self,
        probe: Probe,
        config: PollConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self._config = config
        self._clock = clock
        self._attempts = 0
        self._subscribed = False
        self._cancelled = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_event = asyncio.Event()

    @property
    def config(self) -> PollConfig:
        return self._config

    @property
    def attempts(self) -> int:
        """Number of probes started so far."""
        return self._attempts

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def subscribe(self) -> Any:  # noqa: ANN401
        """Run the polling loop and return the completing probe's payload.

        Raises:
            PollTimeoutError: The deadline passed first. ``name`` is the
                configured ``timeout_error_name``.
            PollCancelledError: :meth:`cancel` was called.
            InvalidUsageError: ``subscribe()`` was already called on this
                client.
        """
        if self._subscribed:
            raise InvalidUsageError("PollingClient.subscribe() can only be called once")
        self._subscribed = True
        self._loop = asyncio.get_running_loop()
        if self._cancelled:
            self._cancel_event.set()

        timeout = self._config.timeout
        frequency = self._config.frequency
        deadline = self._clock() + timeout

        while True:
            self._raise_if_cancelled()
            if self._clock() >= deadline:
                self._raise_timeout()

            self._attempts += 1
            logger.debug("Polling attempt %d", self._attempts)
            result = await self._run_probe()
            self._raise_if_cancelled()

            if result.completed:
                logger.debug("Polling completed after %d attempt(s)", self._attempts)
                return result.payload

            remaining = deadline - self._clock()
            if remaining <= frequency:
                # The next attempt would start at or past the deadline.
                await self._pause(remaining)
                self._raise_if_cancelled()
                self._raise_timeout()
            await self._pause(frequency)

    def cancel(self) -> None:
        """Stop polling. Safe to call from any thread, before or during ``subscribe()``.

        A pending ``subscribe()`` raises :class:`PollCancelledError` once the
        current pause is interrupted or the in-flight probe returns.
        """
        if self._cancelled:
            return
        self._cancelled = True
        logger.debug("Polling cancelled after %d attempt(s)", self._attempts)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._cancel_event.set)

    async def _run_probe(self) -> PollResult:
        if inspect.iscoroutinefunction(self._probe):
            result = await self._probe()
        else:
            result = await asyncio.to_thread(self._probe)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, PollResult):
            return result
        return PollResult.model_validate(result)

    async def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise PollCancelledError(
                f"Polling was cancelled after {self._attempts} attempt(s)"
            )

    def _raise_timeout(self) -> None:
        name = self._config.timeout_error_name
        logger.debug("%s: gave up after %d attempt(s)", name, self._attempts)
        raise PollTimeoutError(
            f"The operation timed out after {self._config.timeout:g} seconds "
            f"({self._attempts} attempt(s))",
            name=name,
        )
