"""
Settlement exception taxonomy.

Every failure surfaced by the settlement engine is a SettlementError subclass
carrying the raw chain rejection reason (when one exists) for diagnostics.
Library exceptions raised at the network seam are classified here so adapters
can translate them uniformly.
"""

from algosdk.error import AlgodHTTPError
from web3.exceptions import Web3Exception


class SettlementError(Exception):
    """Base class for settlement failures."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        tx_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.tx_id = tx_id

    def __str__(self) -> str:
        if self.reason and self.reason not in self.message:
            return f"{self.message} (chain: {self.reason})"
        return self.message


class ValidationError(SettlementError):
    """Invalid input: non-positive amount, past due date, bad address."""


class AlreadyPaidError(SettlementError):
    """Payment attempted on an invoice that is no longer in Created state."""


class NotEscrowedError(SettlementError):
    """Release or refund attempted from a state that does not allow it."""


class UnauthorizedError(SettlementError):
    """Caller lacks the role required for the action."""


class ChainError(SettlementError):
    """RPC failure, insufficient balance, submission or compile failure."""


class ConfirmationTimeoutError(SettlementError):
    """Transaction was not observed as confirmed within the polling bound."""


class NotFoundError(SettlementError):
    """Invoice does not exist on chain."""


# Exception categories based on handling strategy

# Transport and node-side failures - translated to ChainError
TRANSPORT_ERRORS = (
    Web3Exception,     # Web3 RPC errors (includes reverts not mapped by reason)
    AlgodHTTPError,    # algod rejections (algosdk)
    ConnectionError,
    OSError,           # includes urllib errors from the algosdk client
)
