"""Connectivity gate checked before each dispatcher pass."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


def always_online() -> bool:
    """Default check: assume the network is reachable."""
    return True


def tcp_probe(host: str = "1.1.1.1", port: int = 53, timeout: float = 3.0) -> Callable:
    """
    Build a check that opens a TCP connection to a well-known host.

    Example:
        gate = NetworkGate(tcp_probe("8.8.8.8", 53, timeout=2))
    """

    async def probe() -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    return probe


class NetworkGate:
    """
    Best-effort connectivity check.

    A connected result does not guarantee uploads will succeed; failures
    mid-pass go through the normal retry path.
    """

    def __init__(self, check: Callable[[], Any] | None = None) -> None:
        self._check = check or always_online

    async def is_connected(self) -> bool:
        """Run the check (sync or async). A raising check counts as offline."""
        try:
            if inspect.iscoroutinefunction(self._check):
                result = await self._check()
            else:
                result = self._check()
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False
        return bool(result)
