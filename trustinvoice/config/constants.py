"""
Settlement constants.

Centralized constants for fee arithmetic, confirmation bounds and
chain-specific encoding.
"""

from decimal import Decimal

# ========================================================================
# FEE CONSTANTS
# ========================================================================

BASIS_POINTS = 10_000  # 100% expressed in basis points
DEFAULT_FEE_BPS = 250  # 2.5% platform fee
MIN_FEE_BPS = 0
MAX_FEE_BPS = BASIS_POINTS

# ========================================================================
# CONFIRMATION CONSTANTS
# ========================================================================

# Blocks on top of the creation receipt before an EVM invoice is final
EVM_CREATE_CONFIRMATIONS = 6
# Lifecycle actions (pay/release/refund) only need inclusion
EVM_ACTION_CONFIRMATIONS = 1
EVM_POLL_INTERVAL = 2.0  # seconds between receipt polls
EVM_MAX_POLL_ATTEMPTS = 90  # ~3 minutes at the default interval
EVM_POLL_BACKOFF = 1.0  # fixed interval by default

# Algorand rounds to wait for a submitted transaction
ALGORAND_WAIT_ROUNDS = 4

# RPC call timeout (seconds)
RPC_TIMEOUT = 30.0

# ========================================================================
# GAS CONSTANTS
# ========================================================================

DEFAULT_GAS_LIMIT = 300_000  # Used when estimation is unavailable
GAS_LIMIT_MULTIPLIER = 1.2  # Safety buffer on top of estimate_gas
DEFAULT_MAX_GAS_PRICE_GWEI = Decimal("200")

# ========================================================================
# ENCODING CONSTANTS
# ========================================================================

EVM_DECIMALS = 18
ALGORAND_DECIMALS = 6

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Algorand global state keys are limited to 64 bytes:
# "invoice_" + id + "_recipient" must fit
ALGORAND_MAX_KEY_BYTES = 64
ALGORAND_KEY_PREFIX = "invoice_"
ALGORAND_LONGEST_FIELD = "_recipient"
ALGORAND_MAX_INVOICE_ID_BYTES = (
    ALGORAND_MAX_KEY_BYTES - len(ALGORAND_KEY_PREFIX) - len(ALGORAND_LONGEST_FIELD)
)

# Global schema reserved for the invoice application
ALGORAND_GLOBAL_UINTS = 32
ALGORAND_GLOBAL_BYTES = 32

# Registry contract limits
MAX_INVOICE_ID_LENGTH = 64
MAX_DESCRIPTION_LENGTH = 1_024

# Algorand transaction defaults
ALGORAND_MIN_TXN_FEE = 1_000  # microAlgos
ALGORAND_VALIDITY_WINDOW = 1_000  # rounds a transaction stays valid
