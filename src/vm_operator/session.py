"""Provider session and the bounded-parallelism admission gate.

One ProviderSession exists per configured provider. Every lifecycle operation
takes an AcquisitionTicket from it before touching the compute API, so at most
``max_parallel`` operations talk to the backend at once.

A ticket carries its own ``held`` flag, which makes both acquire and release
idempotent per ticket. Call sites rely on this: they release early to let slow
post-processing (connection discovery) overlap with other operations and keep
a deferred release in ``finally`` for the error paths.

Usage:
    async with session.ticket() as ticket:
        vmr = await session.call(client.get_vm_ref_by_name, "web-01")
        ...
        ticket.release()  # optional early release
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any, TypeVar

from .client import ComputeClient
from .config import MINIMUM_PERMISSIONS, ConfigurationError, ProviderConfig
from .errors import InsufficientPermissions

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GateTimeoutError(Exception):
    """Raised when gate admission is not granted within the configured timeout."""

    pass


class AcquisitionTicket:
    """Per-call admission guard. Not shared between operations."""

    def __init__(self, session: ProviderSession) -> None:
        self._session = session
        self.held = False

    async def acquire(self) -> None:
        """Wait for a free slot. No-op if this ticket already holds one."""
        if self.held:
            return
        await self._session._admit()
        self.held = True

    def release(self) -> None:
        """Give the slot back. No-op if this ticket holds none."""
        if not self.held:
            return
        self.held = False
        self._session._leave()

    async def __aenter__(self) -> AcquisitionTicket:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


class ProviderSession:
    """Shared state of one configured provider.

    Holds the compute client, the credentials identity and the admission
    counter. The counter is the only state mutated across operations.
    """

    def __init__(self, config: ProviderConfig, client: ComputeClient) -> None:
        """Initialize the session.

        Args:
            config: Validated provider configuration.
            client: Compute API client shared by all operations.

        Raises:
            ConfigurationError: If ``config.max_parallel`` is below one.
        """
        if config.max_parallel < 1:
            raise ConfigurationError(f"max_parallel must be at least 1: {config.max_parallel}")
        self._config = config
        self._client = client
        self._semaphore = asyncio.Semaphore(config.max_parallel)
        self._current_parallel = 0

    @property
    def config(self) -> ProviderConfig:
        """Get the provider configuration."""
        return self._config

    @property
    def client(self) -> ComputeClient:
        """Get the compute API client."""
        return self._client

    @property
    def max_parallel(self) -> int:
        return self._config.max_parallel

    @property
    def current_parallel(self) -> int:
        return self._current_parallel

    def ticket(self) -> AcquisitionTicket:
        """Create an unacquired ticket bound to this session."""
        return AcquisitionTicket(self)

    async def parallel_begin(self) -> AcquisitionTicket:
        """Create a ticket and acquire it."""
        ticket = self.ticket()
        await ticket.acquire()
        return ticket

    async def _admit(self) -> None:
        timeout = self._config.gate_timeout_seconds
        try:
            if timeout is None:
                await self._semaphore.acquire()
            else:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
        except TimeoutError as e:
            logger.error(
                "Timed out waiting for gate admission",
                extra={
                    "timeout_seconds": timeout,
                    "current_parallel": self._current_parallel,
                    "max_parallel": self.max_parallel,
                },
            )
            raise GateTimeoutError(
                f"no free operation slot within {timeout}s "
                f"({self._current_parallel}/{self.max_parallel} in use)"
            ) from e

        self._current_parallel += 1
        logger.debug(
            "Gate admission granted",
            extra={"current_parallel": self._current_parallel, "max_parallel": self.max_parallel},
        )

    def _leave(self) -> None:
        self._current_parallel -= 1
        self._semaphore.release()
        logger.debug(
            "Gate slot released",
            extra={"current_parallel": self._current_parallel, "max_parallel": self.max_parallel},
        )

    async def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking client call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    async def verify_permissions(self) -> None:
        """Check the token holds every privilege in MINIMUM_PERMISSIONS.

        Raises:
            InsufficientPermissions: Listing the missing privileges, sorted.
        """
        async with self.ticket():
            granted = await self.call(self._client.get_permissions)

        missing = sorted(set(MINIMUM_PERMISSIONS) - set(granted))
        if missing:
            raise InsufficientPermissions(self._config.user_id, missing)

        logger.info(
            "Token permissions verified",
            extra={"user_id": self._config.user_id, "checked": len(MINIMUM_PERMISSIONS)},
        )
