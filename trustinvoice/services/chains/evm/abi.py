"""
TrustInvoice registry ABI.

This module contains:
- Registry contract ABI (lifecycle, views, admin, events)
- Minimal ERC-20 ABI used for token invoices
- Revert reasons emitted by the registry

The registry deployed with this engine extends the minimal TrustInvoice
interface in two places:
- refundInvoice is payable. A settled non-escrow invoice holds nothing on
  the registry, so the refunder sends the amount with the call.
- getInvoice returns creator, isReleased and feeBps as well, so refund
  authorization and the fee rate captured at payment come from chain.
Registries deployed from the minimal interface are not compatible.
"""

# TrustInvoice registry contract ABI
TRUST_INVOICE_REGISTRY_ABI = [
    # ---- lifecycle ----
    {
        "name": "createInvoice",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_invoiceId", "type": "string"},
            {"name": "_recipient", "type": "address"},
            {"name": "_amount", "type": "uint256"},
            {"name": "_dueDate", "type": "uint256"},
            {"name": "_tokenAddress", "type": "address"},
            {"name": "_isEscrow", "type": "bool"},
            {"name": "_description", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "payInvoice",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{"name": "_invoiceHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "name": "releaseEscrow",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_invoiceHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "name": "refundInvoice",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{"name": "_invoiceHash", "type": "bytes32"}],
        "outputs": [],
    },
    # ---- views ----
    {
        "name": "getInvoice",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "_invoiceHash", "type": "bytes32"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "recipient", "type": "address"},
                    {"name": "creator", "type": "address"},
                    {"name": "payer", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "dueDate", "type": "uint256"},
                    {"name": "createdAt", "type": "uint256"},
                    {"name": "tokenAddress", "type": "address"},
                    {"name": "isPaid", "type": "bool"},
                    {"name": "isRefunded", "type": "bool"},
                    {"name": "isEscrow", "type": "bool"},
                    {"name": "isReleased", "type": "bool"},
                    {"name": "feeBps", "type": "uint256"},
                    {"name": "invoiceId", "type": "string"},
                    {"name": "description", "type": "string"},
                ],
            }
        ],
    },
    {
        "name": "isOverdue",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "_invoiceHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "platformFee",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "authorizedTokens",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    # ---- admin ----
    {
        "name": "updatePlatformFee",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_newFee", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "authorizeToken",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_token", "type": "address"},
            {"name": "_authorized", "type": "bool"},
        ],
        "outputs": [],
    },
    {
        "name": "pause",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "name": "unpause",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    # ---- events ----
    {
        "name": "InvoiceCreated",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "invoiceHash", "type": "bytes32"},
            {"indexed": True, "name": "invoiceId", "type": "string"},
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "dueDate", "type": "uint256"},
            {"indexed": False, "name": "tokenAddress", "type": "address"},
        ],
    },
    {
        "name": "InvoicePaid",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "invoiceHash", "type": "bytes32"},
            {"indexed": True, "name": "invoiceId", "type": "string"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "fee", "type": "uint256"},
        ],
    },
    {
        "name": "EscrowReleased",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "invoiceHash", "type": "bytes32"},
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
    },
    {
        "name": "InvoiceRefunded",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "invoiceHash", "type": "bytes32"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
    },
]

# ERC-20 subset needed to pre-approve token payments
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# ========================================================================
# REVERT REASONS
# ========================================================================

REVERT_NOT_FOUND = "Invoice does not exist"
REVERT_DUPLICATE_ID = "Invoice ID already exists"
REVERT_ALREADY_PAID = "Invoice already paid"
REVERT_WRONG_AMOUNT = "Incorrect payment amount"
REVERT_PAST_DUE_DATE = "Due date must be in the future"
REVERT_ZERO_AMOUNT = "Amount must be greater than zero"
REVERT_INVALID_RECIPIENT = "Invalid recipient"
REVERT_TOKEN_NOT_AUTHORIZED = "Token not authorized"
REVERT_TOKEN_TRANSFER_FAILED = "Token transfer failed"
REVERT_ONLY_RECIPIENT = "Only recipient can release"
REVERT_NOT_AUTHORIZED_REFUND = "Not authorized to refund"
REVERT_NOT_OWNER = "Ownable: caller is not the owner"
REVERT_NOT_ESCROW = "Not an escrow invoice"
REVERT_NOT_PAID = "Invoice not paid"
REVERT_ALREADY_RELEASED = "Escrow already released"
REVERT_ALREADY_REFUNDED = "Invoice already refunded"
REVERT_INVALID_FEE = "Fee cannot exceed 100%"
REVERT_PAUSED = "Pausable: paused"
