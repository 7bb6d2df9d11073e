# tests/fakes.py
# Stand-ins for the mirror node and the Hedera client, plus payload builders.

import json
from decimal import Decimal

import requests

from hiveminds.exceptions import LedgerError, LedgerOutcomeUnknown
from hiveminds.services.payment_verifier import normalize_transaction_id

NOW = 1_760_000_000.0
PLATFORM_ACCOUNT = "0.0.5005"
BUYER_WALLET = "0.0.7777"
SELLER_WALLET = "0.0.4242"
CREDENTIAL_TYPE = "0.0.9001"

# The same transaction in both encodings
PAYMENT_TX_EXPLORER = "0.0.7777@1759996400.123456789"
PAYMENT_TX_SDK = "0.0.7777-1759996400-123456789"

_REASONS = {200: "OK", 400: "Bad Request", 404: "Not Found", 500: "Internal Server Error", 503: "Service Unavailable"}


def make_response(status_code=200, payload=None, raw=None):
    response = requests.Response()
    response.status_code = status_code
    response.reason = _REASONS.get(status_code, "")
    response._content = raw if raw is not None else json.dumps(payload or {}).encode()
    response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    return response


def payment_payload(tinybars=20_000_000_000, platform=PLATFORM_ACCOUNT, buyer=BUYER_WALLET,
                    result="SUCCESS", name="CRYPTOTRANSFER", age_seconds=3600):
    """Mirror node body for a buyer -> platform HBAR payment."""
    node_fee = 104_000
    return {
        "transactions": [
            {
                "consensus_timestamp": f"{NOW - age_seconds:.9f}",
                "name": name,
                "result": result,
                "transaction_id": PAYMENT_TX_SDK,
                "transfers": [
                    {"account": "0.0.3", "amount": node_fee, "is_approval": False},
                    {"account": buyer, "amount": -(tinybars + node_fee), "is_approval": False},
                    {"account": platform, "amount": tinybars, "is_approval": False},
                ],
            }
        ]
    }


def ledger_tx_response(result="SUCCESS"):
    """Mirror node body for one of the platform's own ledger transactions."""
    return make_response(200, {"transactions": [{"result": result, "name": "CRYPTOTRANSFER", "transfers": []}]})


def hbar(amount) -> int:
    return int(Decimal(str(amount)) * 100_000_000)


class FakeMirrorNode:
    """Returns queued responses in order; the last one repeats. Ids in .transactions get their own response."""

    def __init__(self, *responses):
        self.responses = list(responses) or [make_response(404)]
        self.calls = []
        self.balances = {}
        self.transactions = {}

    def answer_for(self, tx_id, response):
        self.transactions[normalize_transaction_id(tx_id)] = response

    def respond_with(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get_transaction(self, tx_id):
        self.calls.append(tx_id)
        if tx_id in self.transactions:
            return self.transactions[tx_id]
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get_token_balance(self, account_id, token_id):
        return self.balances.get((account_id, token_id), 0)


class FakeLedger:
    """
    Records ledger operations.

    Operations named in fail_on are rejected with LedgerError and take no
    effect. Operations named in lose_receipt_on take effect, then raise
    LedgerOutcomeUnknown (once each). .applied lists what reached the ledger.
    """

    def __init__(self, fail_on=(), lose_receipt_on=()):
        self.calls = []
        self.applied = []
        self.submitted = []
        self.fail_on = set(fail_on)
        self.lose_receipt_on = set(lose_receipt_on)
        self._seq = 0

    def _tx(self, op, *args, on_submit=None):
        self.calls.append((op,) + args)
        self._seq += 1
        tx_id = f"{PLATFORM_ACCOUNT}@1760000000.{self._seq:09d}"
        if on_submit is not None:
            on_submit(tx_id)
        self.submitted.append(tx_id)
        if op in self.fail_on:
            raise LedgerError(f"{op} failed with status INSUFFICIENT_PAYER_BALANCE")
        self.applied.append(op)
        if op in self.lose_receipt_on:
            self.lose_receipt_on.discard(op)
            raise LedgerOutcomeUnknown(f"Timed out after 60s waiting for {op}")
        return tx_id

    def ops(self):
        return [call[0] for call in self.calls]

    def transfer_hbar(self, recipient, tinybars, on_submit=None):
        return self._tx("transfer_hbar", recipient, tinybars, on_submit=on_submit)

    def create_token(self, name, symbol, memo):
        self._tx("create_token", name, symbol, memo)
        return CREDENTIAL_TYPE

    def mint_token(self, token_id, amount, on_submit=None):
        return self._tx("mint_token", token_id, amount, on_submit=on_submit)

    def transfer_token(self, token_id, recipient, amount, on_submit=None):
        return self._tx("transfer_token", token_id, recipient, amount, on_submit=on_submit)
