"""
Invoice application for Algorand.

Stateful TEAL application. One application instance holds a small number
of invoices in global state under the keys

    invoice_<id>_amount, invoice_<id>_due_date, invoice_<id>_recipient,
    invoice_<id>_creator, invoice_<id>_paid, invoice_<id>_payer,
    invoice_<id>_refunded

Group structures:
- create_invoice: AppCall(create_invoice, id, amount, due_date, recipient)
- pay_invoice:    [AppCall(pay_invoice, id), Payment(payer -> recipient, amount)]
- refund_invoice: AppCall(refund_invoice, id), fee >= 2 * min fee (one inner payment)
"""

from functools import lru_cache

from trustinvoice.config.constants import (
    ALGORAND_GLOBAL_BYTES,
    ALGORAND_GLOBAL_UINTS,
    ALGORAND_KEY_PREFIX,
)


TEAL_VERSION = 8

METHOD_CREATE_INVOICE = "create_invoice"
METHOD_PAY_INVOICE = "pay_invoice"
METHOD_REFUND_INVOICE = "refund_invoice"

METHODS = (
    METHOD_CREATE_INVOICE,
    METHOD_PAY_INVOICE,
    METHOD_REFUND_INVOICE,
)

# Application-level keys
KEY_APP_CREATOR = "creator"
KEY_TOTAL_INVOICES = "total_invoices"

# Per-invoice field suffixes
FIELD_AMOUNT = "amount"
FIELD_DUE_DATE = "due_date"
FIELD_RECIPIENT = "recipient"
FIELD_CREATOR = "creator"
FIELD_PAID = "paid"
FIELD_PAYER = "payer"
FIELD_REFUNDED = "refunded"

INVOICE_FIELDS = (
    FIELD_AMOUNT,
    FIELD_DUE_DATE,
    FIELD_RECIPIENT,
    FIELD_CREATOR,
    FIELD_PAID,
    FIELD_PAYER,
    FIELD_REFUNDED,
)

# create_invoice arguments: method, id, amount, due_date, recipient
CREATE_INVOICE_ARGS = 5

# Schema requested when deploying the application
GLOBAL_UINTS = ALGORAND_GLOBAL_UINTS
GLOBAL_BYTE_SLICES = ALGORAND_GLOBAL_BYTES


def invoice_key(invoice_id: bytes | str, field: str) -> bytes:
    """Global state key of one invoice field, as stored on chain."""
    if isinstance(invoice_id, str):
        invoice_id = invoice_id.encode()
    return ALGORAND_KEY_PREFIX.encode() + invoice_id + f"_{field}".encode()


def _key(field: str) -> list[str]:
    """Push the state key of `field` for the invoice id in arg 1."""
    return [
        f'byte "{ALGORAND_KEY_PREFIX}"',
        "txna ApplicationArgs 1",
        "concat",
        f'byte "_{field}"',
        "concat",
    ]


def _get(field: str) -> list[str]:
    return [*_key(field), "app_global_get"]


def _put(field: str, value: list[str]) -> list[str]:
    return [*_key(field), *value, "app_global_put"]


def _assert_eq(left: list[str], right: list[str]) -> list[str]:
    return [*left, *right, "==", "assert"]


def _router() -> list[str]:
    lines = [
        "txn ApplicationID",
        "int 0",
        "==",
        "bnz on_create",
    ]
    for on_complete, target in (
        ("UpdateApplication", "reject"),
        ("DeleteApplication", "reject"),
        ("OptIn", "approve"),
        ("CloseOut", "approve"),
    ):
        lines += ["txn OnCompletion", f"int {on_complete}", "==", f"bnz {target}"]

    lines += [
        "txn OnCompletion",
        "int NoOp",
        "!=",
        "bnz reject",
        "txn NumAppArgs",
        "int 2",
        "<",
        "bnz reject",
    ]
    for method in METHODS:
        lines += ["txna ApplicationArgs 0", f'byte "{method}"', "==", f"bnz {method}"]
    lines.append("err")
    return lines


def _on_create() -> list[str]:
    return [
        "on_create:",
        f'byte "{KEY_APP_CREATOR}"',
        "txn Sender",
        "app_global_put",
        f'byte "{KEY_TOTAL_INVOICES}"',
        "int 0",
        "app_global_put",
        "b approve",
    ]


def _create_invoice() -> list[str]:
    return [
        f"{METHOD_CREATE_INVOICE}:",
        *_assert_eq(["txn NumAppArgs"], [f"int {CREATE_INVOICE_ARGS}"]),
        "txna ApplicationArgs 2",
        "btoi",
        "int 0",
        ">",
        "assert",
        "txna ApplicationArgs 3",
        "btoi",
        "global LatestTimestamp",
        ">",
        "assert",
        *_assert_eq(["txna ApplicationArgs 4", "len"], ["int 32"]),
        # invoice must not exist yet
        "int 0",
        *_key(FIELD_AMOUNT),
        "app_global_get_ex",
        "!",
        "assert",
        "pop",
        *_put(FIELD_AMOUNT, ["txna ApplicationArgs 2", "btoi"]),
        *_put(FIELD_DUE_DATE, ["txna ApplicationArgs 3", "btoi"]),
        *_put(FIELD_RECIPIENT, ["txna ApplicationArgs 4"]),
        *_put(FIELD_CREATOR, ["txn Sender"]),
        *_put(FIELD_PAID, ["int 0"]),
        *_put(FIELD_REFUNDED, ["int 0"]),
        f'byte "{KEY_TOTAL_INVOICES}"',
        f'byte "{KEY_TOTAL_INVOICES}"',
        "app_global_get",
        "int 1",
        "+",
        "app_global_put",
        "b approve",
    ]


def _pay_invoice() -> list[str]:
    return [
        f"{METHOD_PAY_INVOICE}:",
        *_assert_eq(["global GroupSize"], ["int 2"]),
        *_assert_eq(["txn GroupIndex"], ["int 0"]),
        "int 0",
        *_key(FIELD_AMOUNT),
        "app_global_get_ex",
        "assert",
        "store 0",
        *_assert_eq(_get(FIELD_PAID), ["int 0"]),
        *_assert_eq(["gtxn 1 TypeEnum"], ["int pay"]),
        *_assert_eq(["gtxn 1 Sender"], ["txn Sender"]),
        *_assert_eq(["gtxn 1 Receiver"], _get(FIELD_RECIPIENT)),
        *_assert_eq(["gtxn 1 Amount"], ["load 0"]),
        *_assert_eq(["gtxn 1 CloseRemainderTo"], ["global ZeroAddress"]),
        *_assert_eq(["gtxn 1 RekeyTo"], ["global ZeroAddress"]),
        *_put(FIELD_PAID, ["int 1"]),
        *_put(FIELD_PAYER, ["txn Sender"]),
        "b approve",
    ]


def _refund_invoice() -> list[str]:
    return [
        f"{METHOD_REFUND_INVOICE}:",
        *_assert_eq(["txn Sender"], _get(FIELD_CREATOR)),
        *_assert_eq(_get(FIELD_PAID), ["int 1"]),
        *_assert_eq(_get(FIELD_REFUNDED), ["int 0"]),
        "itxn_begin",
        "int pay",
        "itxn_field TypeEnum",
        *_get(FIELD_PAYER),
        "itxn_field Receiver",
        *_get(FIELD_AMOUNT),
        "itxn_field Amount",
        "int 0",
        "itxn_field Fee",
        "itxn_submit",
        *_put(FIELD_REFUNDED, ["int 1"]),
        "b approve",
    ]


def _exits() -> list[str]:
    return [
        "approve:",
        "int 1",
        "return",
        "reject:",
        "int 0",
        "return",
    ]


@lru_cache(maxsize=1)
def compile_approval_teal() -> str:
    """TEAL source of the approval program."""
    lines = [
        f"#pragma version {TEAL_VERSION}",
        *_router(),
        *_on_create(),
        *_create_invoice(),
        *_pay_invoice(),
        *_refund_invoice(),
        *_exits(),
    ]
    return "\n".join(lines) + "\n"


@lru_cache(maxsize=1)
def compile_clear_teal() -> str:
    """TEAL source of the clear-state program."""
    return f"#pragma version {TEAL_VERSION}\nint 1\nreturn\n"
