"""Concurrency control for decrypted secret material.

Provides a named asyncio lock registry so that only one task at a time
holds a decrypted mnemonic or derived key for a given vault.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from vaultwallet.errors import LockTimeoutError

logger = logging.getLogger(__name__)

# Global lock registry: name -> asyncio.Lock
_secret_locks: dict[str, asyncio.Lock] = {}

DEFAULT_LOCK_NAME = "vault"


def get_secret_lock(name: str = DEFAULT_LOCK_NAME) -> asyncio.Lock:
    """Get or create the lock guarding a named secret.

    Registry access never awaits, so it is atomic on the event loop.
    """
    if name not in _secret_locks:
        _secret_locks[name] = asyncio.Lock()
    return _secret_locks[name]


class SecretLock:
    """Context manager for exclusive access to decrypted secret material.

    Example:
        async with SecretLock(operation="sign"):
            mnemonic = decrypt(...)
            ...
    """

    def __init__(
        self,
        name: str = DEFAULT_LOCK_NAME,
        timeout: Optional[float] = 30.0,
        operation: str = "secret_access",
    ):
        """Initialize the lock.

        Args:
            name: Which secret to guard
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.name = name
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "SecretLock":
        """Acquire the lock."""
        self._lock = get_secret_lock(self.name)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Secret lock acquired ({self.name}): {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Secret lock timeout ({self.name}) after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire secret lock {self.name} within {self.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Secret lock released ({self.name}): {self.operation}")
        return False

    @property
    def held(self) -> bool:
        return self._acquired


@asynccontextmanager
async def secret_lock(
    name: str = DEFAULT_LOCK_NAME,
    timeout: Optional[float] = 30.0,
    operation: str = "secret_access",
):
    """Functional form of SecretLock.

    Example:
        async with secret_lock(operation="export"):
            ...
    """
    async with SecretLock(name, timeout=timeout, operation=operation) as lock:
        yield lock


def clear_secret_locks() -> None:
    """Clear all secret locks (useful for testing)."""
    _secret_locks.clear()
