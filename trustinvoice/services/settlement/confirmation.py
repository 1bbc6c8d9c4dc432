"""
Transaction Confirmation Waiter.

Bounded polling for transaction finality. The waiter only observes: it never
resubmits a transaction, because resubmitting an already-broadcast settlement
action risks executing it twice. Giving up only means "stop waiting locally".
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from trustinvoice.utils.exceptions import ConfirmationTimeoutError
from trustinvoice.utils.security import mask_tx_hash


T = TypeVar("T")

Probe = Callable[[], Awaitable[T | None]]
Pause = Callable[[], Awaitable[None]]


class TransactionConfirmationWaiter:
    """
    Polls a probe until it reports confirmation or the attempt bound is hit.

    Features:
    - Fixed or exponential backoff interval
    - Custom pause (e.g. waiting for the next Algorand round)
    - Typed timeout carrying the transaction id
    """

    def __init__(
        self,
        max_attempts: int,
        interval: float = 1.0,
        backoff: float = 1.0,
        max_interval: float = 30.0,
    ) -> None:
        """
        Initialize confirmation waiter.

        Args:
            max_attempts: Maximum number of probes (rounds, blocks, polls)
            interval: Seconds to sleep between probes
            backoff: Multiplier applied to the interval after each probe
            max_interval: Upper bound for the backed-off interval
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval

    async def wait(
        self,
        tx_id: str,
        probe: Probe,
        pause: Pause | None = None,
        what: str = "confirmation",
    ) -> T:
        """
        Wait until probe returns a non-None value.

        Args:
            tx_id: Transaction being waited on (for errors and logs)
            probe: Coroutine returning the confirmed result or None if pending
            pause: Optional coroutine replacing the sleep between probes
            what: Label used in log messages

        Returns:
            The first non-None probe result

        Raises:
            ConfirmationTimeoutError: If no confirmation within max_attempts
        """
        delay = self.interval

        for attempt in range(1, self.max_attempts + 1):
            result = await probe()
            if result is not None:
                logger.debug(
                    f"{what} for {mask_tx_hash(tx_id)} observed "
                    f"after {attempt} attempt(s)"
                )
                return result

            if attempt == self.max_attempts:
                break

            if pause is not None:
                await pause()
            else:
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff, self.max_interval)

        logger.warning(
            f"Gave up waiting for {what} of {mask_tx_hash(tx_id)} "
            f"after {self.max_attempts} attempts - transaction may still confirm"
        )
        raise ConfirmationTimeoutError(
            f"Transaction {tx_id} not confirmed after {self.max_attempts} attempts",
            tx_id=tx_id,
        )
