"""
In-process Algorand ledger.

Serves the algosdk AlgodClient methods the gateway uses, without a node.
Submitted groups go through the checks algod applies before a group enters
the pool: Ed25519 signatures, group id, genesis hash, validity window,
duplicate ids and pooled fees. The invoice application is then evaluated
with the semantics of its TEAL program (see program.py), and each accepted
group closes one round. A rejected group leaves no trace.

Used for offline runs and the test suite.
"""

import base64
import copy
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from algosdk import constants, encoding, logic, transaction
from algosdk.error import AlgodHTTPError
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from loguru import logger

from trustinvoice.config.constants import (
    ALGORAND_MAX_KEY_BYTES,
    ALGORAND_MIN_TXN_FEE,
    ALGORAND_VALIDITY_WINDOW,
)
from trustinvoice.services.chains.algorand.program import (
    CREATE_INVOICE_ARGS,
    FIELD_AMOUNT,
    FIELD_CREATOR,
    FIELD_DUE_DATE,
    FIELD_PAID,
    FIELD_PAYER,
    FIELD_RECIPIENT,
    FIELD_REFUNDED,
    KEY_APP_CREATOR,
    KEY_TOTAL_INVOICES,
    METHOD_CREATE_INVOICE,
    METHOD_PAY_INVOICE,
    METHOD_REFUND_INVOICE,
    compile_approval_teal,
    compile_clear_teal,
    invoice_key,
)
from trustinvoice.services.chains.algorand.state import encode_global_state
from trustinvoice.utils.security import mask_address


FIRST_APP_ID = 1001

OnComplete = transaction.OnComplete


class LogicEvalError(Exception):
    """Approval program rejected the transaction."""


@dataclass
class LocalApplication:
    app_id: int
    creator: str
    approval_program: bytes
    clear_program: bytes
    global_schema: transaction.StateSchema
    state: dict[bytes, int | bytes] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return logic.get_application_address(self.app_id)


def _btoi(value: bytes) -> int:
    if len(value) > 8:
        raise LogicEvalError("btoi arg too long")
    return int.from_bytes(value, "big")


def _require(condition: bool) -> None:
    if not condition:
        raise LogicEvalError("assert failed")


def bytes_to_sign(txn: transaction.Transaction) -> bytes:
    """Message an account signs: "TX" followed by the canonical encoding."""
    return constants.txid_prefix + base64.b64decode(encoding.msgpack_encode(txn))


def signature_valid(stx: transaction.SignedTransaction) -> bool:
    if not stx.signature:
        return False
    public_key = encoding.decode_address(stx.transaction.sender)
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(
            base64.b64decode(stx.signature), bytes_to_sign(stx.transaction)
        )
    except InvalidSignature:
        return False
    return True


class LocalAlgodLedger:
    """
    Local Algorand ledger hosting invoice applications.

    Test helpers:
    - fund/balance_of for account balances in microAlgos
    - advance_time for due-date checks
    - hold_confirmations/release_held to simulate groups that never confirm
    """

    def __init__(
        self,
        genesis_id: str = "sandnet-v1",
        start_time: int | None = None,
        min_fee: int = ALGORAND_MIN_TXN_FEE,
    ) -> None:
        self.genesis_id = genesis_id
        self.genesis_hash = base64.b64encode(encoding.checksum(genesis_id.encode())).decode()
        self.now = start_time if start_time is not None else int(time.time())
        self.round = 1
        self.min_fee = min_fee
        self.hold_confirmations = False

        self.balances: dict[str, int] = {}
        self.apps: dict[int, LocalApplication] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self._next_app_id = FIRST_APP_ID
        self._held: list[list[transaction.SignedTransaction]] = []
        # Gateway calls arrive from its thread pool
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        encoding.decode_address(address)
        with self._lock:
            self.balances[address] = self.balances.get(address, 0) + amount

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def advance_time(self, seconds: int) -> None:
        with self._lock:
            self.now += seconds
            self.round += 1

    def application_state(self, app_id: int) -> dict[bytes, int | bytes]:
        return dict(self.apps[app_id].state)

    def release_held(self) -> None:
        """Evaluate groups submitted while hold_confirmations was set."""
        with self._lock:
            held, self._held = self._held, []
            for signed in held:
                try:
                    self._apply_group(signed)
                except AlgodHTTPError as exc:
                    for stx in signed:
                        self.transactions[stx.get_txid()]["pool-error"] = str(exc)

    # ------------------------------------------------------------------
    # Pool checks
    # ------------------------------------------------------------------

    def _reject(self, tx_id: str, reason: str) -> AlgodHTTPError:
        return AlgodHTTPError(
            f"TransactionPool.Remember: transaction {tx_id}: {reason}", code=400
        )

    def _check_group(self, signed: list[transaction.SignedTransaction]) -> None:
        txns = [stx.transaction for stx in signed]
        first_id = signed[0].get_txid()

        if len(txns) > 1 or txns[0].group is not None:
            unbound = []
            for txn in txns:
                clone = copy.copy(txn)
                clone.group = None
                unbound.append(clone)
            expected = transaction.calculate_group_id(unbound)
            if any(txn.group != expected for txn in txns):
                raise self._reject(first_id, "incomplete group: group id mismatch")

        for stx in signed:
            txn = stx.transaction
            tx_id = stx.get_txid()
            if not signature_valid(stx):
                raise self._reject(tx_id, "signature validation failed")
            if txn.genesis_hash != self.genesis_hash:
                raise self._reject(tx_id, "genesis hash mismatch")
            if not txn.first_valid_round <= self.round <= txn.last_valid_round:
                raise self._reject(
                    tx_id,
                    f"txn dead: round {self.round} outside of "
                    f"{txn.first_valid_round}--{txn.last_valid_round}",
                )
            if tx_id in self.transactions:
                raise self._reject(tx_id, "transaction already in ledger")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _debit(self, tx_id: str, address: str, amount: int) -> None:
        balance = self.balances.get(address, 0)
        if balance < amount:
            raise self._reject(
                tx_id,
                f"overspend (account {address}, balance {balance}, "
                f"tried to spend {amount})",
            )
        self.balances[address] = balance - amount

    def _credit(self, address: str, amount: int) -> None:
        self.balances[address] = self.balances.get(address, 0) + amount

    def _apply_payment(self, tx_id: str, txn: transaction.PaymentTxn) -> None:
        self._debit(tx_id, txn.sender, txn.amt + txn.fee)
        self._credit(txn.receiver, txn.amt)
        if txn.close_remainder_to:
            remainder = self.balances.pop(txn.sender, 0)
            self._credit(txn.close_remainder_to, remainder)

    def _create_application(self, txn: transaction.ApplicationCallTxn) -> LocalApplication:
        if txn.approval_program != compile_approval_teal().encode():
            raise LogicEvalError("unsupported approval program")
        if txn.clear_program != compile_clear_teal().encode():
            raise LogicEvalError("unsupported clear state program")

        app = LocalApplication(
            app_id=self._next_app_id,
            creator=txn.sender,
            approval_program=txn.approval_program,
            clear_program=txn.clear_program,
            global_schema=txn.global_schema or transaction.StateSchema(0, 0),
        )
        self._next_app_id += 1
        app.state[KEY_APP_CREATOR.encode()] = encoding.decode_address(txn.sender)
        app.state[KEY_TOTAL_INVOICES.encode()] = 0
        return app

    def _put(self, app: LocalApplication, key: bytes, value: int | bytes) -> None:
        if len(key) > ALGORAND_MAX_KEY_BYTES:
            raise LogicEvalError(f"key too long: length was {len(key)}")
        app.state[key] = value

    def _check_schema(self, app: LocalApplication) -> None:
        uints = sum(1 for value in app.state.values() if isinstance(value, int))
        byte_slices = len(app.state) - uints
        schema = app.global_schema
        if uints > (schema.num_uints or 0):
            raise LogicEvalError(
                f"store integer count {uints} exceeds schema integer count "
                f"{schema.num_uints or 0}"
            )
        if byte_slices > (schema.num_byte_slices or 0):
            raise LogicEvalError(
                f"store bytes count {byte_slices} exceeds schema bytes count "
                f"{schema.num_byte_slices or 0}"
            )

    def _create_invoice(
        self, app: LocalApplication, txn: transaction.ApplicationCallTxn
    ) -> None:
        args = txn.app_args
        _require(len(args) == CREATE_INVOICE_ARGS)
        invoice_id = args[1]
        amount = _btoi(args[2])
        due_date = _btoi(args[3])
        recipient = args[4]

        _require(amount > 0)
        _require(due_date > self.now)
        _require(len(recipient) == 32)
        _require(invoice_key(invoice_id, FIELD_AMOUNT) not in app.state)

        creator = encoding.decode_address(txn.sender)
        self._put(app, invoice_key(invoice_id, FIELD_AMOUNT), amount)
        self._put(app, invoice_key(invoice_id, FIELD_DUE_DATE), due_date)
        self._put(app, invoice_key(invoice_id, FIELD_RECIPIENT), recipient)
        self._put(app, invoice_key(invoice_id, FIELD_CREATOR), creator)
        self._put(app, invoice_key(invoice_id, FIELD_PAID), 0)
        self._put(app, invoice_key(invoice_id, FIELD_REFUNDED), 0)
        total_key = KEY_TOTAL_INVOICES.encode()
        app.state[total_key] = int(app.state.get(total_key, 0)) + 1

    def _pay_invoice(
        self,
        app: LocalApplication,
        txn: transaction.ApplicationCallTxn,
        group: list[transaction.Transaction],
        index: int,
    ) -> None:
        invoice_id = txn.app_args[1]
        _require(len(group) == 2)
        _require(index == 0)
        amount_key = invoice_key(invoice_id, FIELD_AMOUNT)
        _require(amount_key in app.state)
        _require(app.state.get(invoice_key(invoice_id, FIELD_PAID), 0) == 0)

        payment = group[1]
        _require(isinstance(payment, transaction.PaymentTxn))
        _require(payment.sender == txn.sender)
        _require(
            encoding.decode_address(payment.receiver)
            == app.state.get(invoice_key(invoice_id, FIELD_RECIPIENT), 0)
        )
        _require(payment.amt == app.state[amount_key])
        _require(not payment.close_remainder_to)
        _require(not payment.rekey_to)

        self._put(app, invoice_key(invoice_id, FIELD_PAID), 1)
        self._put(
            app, invoice_key(invoice_id, FIELD_PAYER), encoding.decode_address(txn.sender)
        )

    def _refund_invoice(
        self, tx_id: str, app: LocalApplication, txn: transaction.ApplicationCallTxn
    ) -> None:
        invoice_id = txn.app_args[1]
        _require(
            encoding.decode_address(txn.sender)
            == app.state.get(invoice_key(invoice_id, FIELD_CREATOR), 0)
        )
        _require(app.state.get(invoice_key(invoice_id, FIELD_PAID), 0) == 1)
        _require(app.state.get(invoice_key(invoice_id, FIELD_REFUNDED), 0) == 0)

        payer = app.state.get(invoice_key(invoice_id, FIELD_PAYER))
        amount = app.state[invoice_key(invoice_id, FIELD_AMOUNT)]
        if not isinstance(payer, bytes):
            raise LogicEvalError("invalid Receiver")
        self._debit(tx_id, app.address, amount)
        self._credit(encoding.encode_address(payer), amount)
        self._put(app, invoice_key(invoice_id, FIELD_REFUNDED), 1)

    def _apply_app_call(
        self,
        tx_id: str,
        txn: transaction.ApplicationCallTxn,
        group: list[transaction.Transaction],
        index: int,
    ) -> tuple[dict[str, Any], int]:
        """
        Evaluate one application call.

        Returns:
            (pending-transaction fields, number of inner transactions)
        """
        self._debit(tx_id, txn.sender, txn.fee)
        result: dict[str, Any] = {}
        inner = 0

        if txn.index == 0:
            app = self._create_application(txn)
            self.apps[app.app_id] = app
            self._check_schema(app)
            result["application-index"] = app.app_id
            return result, inner

        app = self.apps.get(txn.index)
        if app is None:
            raise self._reject(tx_id, f"application {txn.index} does not exist")

        on_complete = txn.on_complete
        if on_complete in (OnComplete.OptInOC, OnComplete.CloseOutOC, OnComplete.ClearStateOC):
            return result, inner
        app_args = txn.app_args or []
        if on_complete != OnComplete.NoOpOC or len(app_args) < 2:
            raise LogicEvalError("rejected by ApprovalProgram")

        method = app_args[0]
        if method == METHOD_CREATE_INVOICE.encode():
            self._create_invoice(app, txn)
        elif method == METHOD_PAY_INVOICE.encode():
            self._pay_invoice(app, txn, group, index)
        elif method == METHOD_REFUND_INVOICE.encode():
            self._refund_invoice(tx_id, app, txn)
            inner = 1
        else:
            raise LogicEvalError("err opcode executed")

        self._check_schema(app)
        return result, inner

    def _apply_group(self, signed: list[transaction.SignedTransaction]) -> None:
        group = [stx.transaction for stx in signed]
        snapshot = (
            copy.deepcopy(self.balances),
            copy.deepcopy(self.apps),
            self._next_app_id,
        )
        results: list[dict[str, Any]] = []
        inner_total = 0
        try:
            for index, stx in enumerate(signed):
                tx_id = stx.get_txid()
                txn = stx.transaction
                try:
                    if isinstance(txn, transaction.PaymentTxn):
                        self._apply_payment(tx_id, txn)
                        results.append({})
                    elif isinstance(txn, transaction.ApplicationCallTxn):
                        fields, inner = self._apply_app_call(tx_id, txn, group, index)
                        results.append(fields)
                        inner_total += inner
                    else:
                        raise self._reject(tx_id, f"unknown transaction type {txn.type}")
                except LogicEvalError as exc:
                    raise self._reject(tx_id, f"logic eval error: {exc}") from exc

            paid_fees = sum(txn.fee for txn in group)
            required = self.min_fee * (len(group) + inner_total)
            if paid_fees < required:
                raise self._reject(
                    signed[0].get_txid(),
                    f"txgroup had {paid_fees} in fees, which is less than the "
                    f"minimum {required}",
                )
        except AlgodHTTPError:
            self.balances, self.apps, self._next_app_id = snapshot
            raise

        self.round += 1
        for stx, fields in zip(signed, results):
            self.transactions[stx.get_txid()] = {
                "confirmed-round": self.round,
                "pool-error": "",
                **fields,
            }

    # ------------------------------------------------------------------
    # AlgodClient interface
    # ------------------------------------------------------------------

    def suggested_params(self, **kwargs: Any) -> transaction.SuggestedParams:
        return transaction.SuggestedParams(
            fee=0,
            first=self.round,
            last=self.round + ALGORAND_VALIDITY_WINDOW,
            gh=self.genesis_hash,
            gen=self.genesis_id,
            flat_fee=False,
            min_fee=self.min_fee,
        )

    def compile(self, source: str, **kwargs: Any) -> dict[str, Any]:
        program = source.encode()
        return {
            "hash": logic.address(program),
            "result": base64.b64encode(program).decode(),
        }

    def send_transactions(
        self, txns: list[transaction.SignedTransaction], **kwargs: Any
    ) -> str:
        signed = list(txns)
        if not signed:
            raise AlgodHTTPError("empty transaction group", code=400)
        if not all(isinstance(stx, transaction.SignedTransaction) for stx in signed):
            raise AlgodHTTPError("attempt to send unsigned transaction", code=400)

        with self._lock:
            self._check_group(signed)
            if self.hold_confirmations:
                for stx in signed:
                    self.transactions[stx.get_txid()] = {
                        "confirmed-round": 0,
                        "pool-error": "",
                    }
                self._held.append(signed)
            else:
                self._apply_group(signed)

        tx_id = signed[0].get_txid()
        logger.debug(
            f"Local round {self.round}: group of {len(signed)} from "
            f"{mask_address(signed[0].transaction.sender)}"
        )
        return tx_id

    def pending_transaction_info(self, transaction_id: str, **kwargs: Any) -> dict[str, Any]:
        info = self.transactions.get(transaction_id)
        if info is None:
            raise AlgodHTTPError("txn does not exist", code=404)
        return dict(info)

    def status(self, **kwargs: Any) -> dict[str, Any]:
        return {"last-round": self.round, "time-since-last-round": 0}

    def status_after_block(self, block_num: int | None = None, **kwargs: Any) -> dict[str, Any]:
        # Empty round
        with self._lock:
            if block_num is not None and self.round <= block_num:
                self.round = block_num + 1
        return self.status()

    def application_info(self, application_id: int, **kwargs: Any) -> dict[str, Any]:
        app = self.apps.get(application_id)
        if app is None:
            raise AlgodHTTPError("application does not exist", code=404)
        return {
            "id": app.app_id,
            "params": {
                "creator": app.creator,
                "approval-program": base64.b64encode(app.approval_program).decode(),
                "clear-state-program": base64.b64encode(app.clear_program).decode(),
                "global-state": encode_global_state(app.state),
                "global-state-schema": {
                    "num-uint": app.global_schema.num_uints or 0,
                    "num-byte-slice": app.global_schema.num_byte_slices or 0,
                },
            },
        }
