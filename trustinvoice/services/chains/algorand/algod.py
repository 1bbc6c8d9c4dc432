"""
algod gateway.

Async access to an algod node for the Algorand adapter. The node client is
algosdk's synchronous AlgodClient (or LocalAlgodLedger, which serves the
same methods in-process); calls run in a thread pool so the event loop
never blocks on HTTP.
"""

import asyncio
import base64
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol, TypeVar

from algosdk import error as algod_error
from algosdk import transaction
from algosdk.v2client.algod import AlgodClient
from loguru import logger

from trustinvoice.config.constants import RPC_TIMEOUT
from trustinvoice.config.networks import NetworkConfig
from trustinvoice.utils.exceptions import ChainError, ConfirmationTimeoutError
from trustinvoice.utils.security import mask_tx_hash


T = TypeVar("T")


class AlgodBackend(Protocol):
    """The subset of algosdk's AlgodClient the gateway relies on."""

    def suggested_params(self, **kwargs: Any) -> transaction.SuggestedParams:
        ...

    def compile(self, source: str, **kwargs: Any) -> dict[str, Any]:
        ...

    def send_transactions(self, txns: list[transaction.SignedTransaction], **kwargs: Any) -> str:
        ...

    def pending_transaction_info(self, transaction_id: str, **kwargs: Any) -> dict[str, Any]:
        ...

    def status(self, **kwargs: Any) -> dict[str, Any]:
        ...

    def status_after_block(self, block_num: int | None = None, **kwargs: Any) -> dict[str, Any]:
        ...

    def application_info(self, application_id: int, **kwargs: Any) -> dict[str, Any]:
        ...


class AlgodGateway:
    """
    Async executor for algod calls.

    Handles:
    - Thread pool execution of the sync algosdk client
    - Per-call timeout
    - Round-bounded confirmation through algosdk's wait_for_confirmation
    """

    def __init__(
        self,
        backend: AlgodBackend,
        timeout: float = RPC_TIMEOUT,
        max_workers: int = 4,
        name: str = "algod",
    ) -> None:
        """
        Initialize algod gateway.

        Args:
            backend: algosdk AlgodClient or LocalAlgodLedger
            timeout: Seconds allowed per node call
            max_workers: Maximum thread pool workers
            name: Network name used in log lines
        """
        self.backend = backend
        self.timeout = timeout
        self.name = name
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def for_network(
        cls, network: NetworkConfig, timeout: float = RPC_TIMEOUT
    ) -> "AlgodGateway":
        client = AlgodClient(network.api_token, network.http_endpoint)
        return cls(client, timeout=timeout, name=network.name)

    def _get_executor(self) -> ThreadPoolExecutor:
        """Get or create the worker pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="algod",
            )
        return self._executor

    async def _run(
        self, func: Callable[[], T], action: str, timeout: float | None = None
    ) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._get_executor(), func),
                timeout=timeout or self.timeout,
            )
        except TimeoutError as exc:
            logger.error(f"Timeout {action} on {self.name}")
            raise ChainError(f"algod timeout {action} on {self.name}") from exc

    async def suggested_params(self) -> transaction.SuggestedParams:
        return await self._run(self.backend.suggested_params, "getting suggested params")

    async def compile(self, source: str) -> bytes:
        """Compile TEAL source; returns the program bytes."""
        result = await self._run(lambda: self.backend.compile(source), "compiling program")
        return base64.b64decode(result["result"])

    async def send_transactions(self, signed: list[transaction.SignedTransaction]) -> str:
        """Submit a transaction or atomic group; returns the first transaction id."""
        tx_id = await self._run(
            lambda: self.backend.send_transactions(signed), "sending transactions"
        )
        logger.debug(f"algod accepted group starting with {mask_tx_hash(tx_id)}")
        return tx_id

    async def wait_for_confirmation(self, tx_id: str, wait_rounds: int) -> dict[str, Any]:
        """
        Block until tx_id is committed, at most wait_rounds rounds.

        Raises:
            ConfirmationTimeoutError: Not committed within wait_rounds
            ChainError: The node dropped the transaction from its pool
        """
        try:
            return await self._run(
                lambda: transaction.wait_for_confirmation(self.backend, tx_id, wait_rounds),
                "waiting for confirmation",
                timeout=self.timeout * (wait_rounds + 1),
            )
        except algod_error.ConfirmationTimeoutError as exc:
            logger.warning(f"{mask_tx_hash(tx_id)} not confirmed after {wait_rounds} rounds")
            raise ConfirmationTimeoutError(
                f"Transaction {tx_id} not confirmed after {wait_rounds} rounds",
                tx_id=tx_id,
            ) from exc
        except algod_error.TransactionRejectedError as exc:
            raise ChainError(
                f"Transaction {tx_id} was dropped from the pool",
                reason=str(exc),
                tx_id=tx_id,
            ) from exc

    async def application_info(self, app_id: int) -> dict[str, Any]:
        return await self._run(
            lambda: self.backend.application_info(app_id), "reading application"
        )

    async def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        self._executor = None

    def __repr__(self) -> str:
        return f"AlgodGateway({self.name})"
