import threading
import pytest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from hiero_sdk_python import ResponseCode

from hiveminds.exceptions import LedgerError, LedgerOutcomeUnknown
from hiveminds.services import hedera_service
from hiveminds.services.hedera_service import HederaLedgerClient


@pytest.fixture()
def ledger_client():
    # Skip __init__: no network client, just the submit path
    client = HederaLedgerClient.__new__(HederaLedgerClient)
    client.network = "testnet"
    client.account_id = "0.0.5005"
    client.timeout = 0.5
    client._client = MagicMock()
    client._operator_id = MagicMock()
    client._operator_key = MagicMock()
    client._executor = ThreadPoolExecutor(max_workers=1)
    yield client
    client._executor.shutdown(wait=False)


def fake_tx(status, tx_id="0.0.5005@1760000000.000000001"):
    tx = MagicMock()
    tx.transaction_id = tx_id
    tx.execute.return_value = MagicMock(status=status)
    return tx


def test_submit_signs_and_returns_the_transaction_id(ledger_client):
    tx = fake_tx(ResponseCode.SUCCESS)

    tx_id, receipt = ledger_client._submit("mint 1 of 0.0.9001", tx)

    assert tx_id == "0.0.5005@1760000000.000000001"
    tx.freeze_with.assert_called_once_with(ledger_client._client)
    tx.sign.assert_called_once_with(ledger_client._operator_key)
    tx.execute.assert_called_once_with(ledger_client._client)


def test_tx_id_is_handed_over_before_sending(ledger_client):
    tx = fake_tx(ResponseCode.SUCCESS)
    seen = []
    on_submit = lambda tx_id: seen.append((tx_id, tx.execute.called))

    ledger_client._submit("HBAR transfer", tx, on_submit)

    assert seen == [("0.0.5005@1760000000.000000001", False)]


def test_nothing_is_sent_when_on_submit_fails(ledger_client):
    tx = fake_tx(ResponseCode.SUCCESS)

    def on_submit(tx_id):
        raise RuntimeError("could not save tx id")

    with pytest.raises(RuntimeError):
        ledger_client._submit("HBAR transfer", tx, on_submit)
    tx.execute.assert_not_called()


def test_non_success_receipt_is_a_known_failure(ledger_client):
    tx = fake_tx(ResponseCode.INSUFFICIENT_PAYER_BALANCE)

    with pytest.raises(LedgerError, match="INSUFFICIENT_PAYER_BALANCE") as exc_info:
        ledger_client._submit("HBAR transfer", tx)
    assert not isinstance(exc_info.value, LedgerOutcomeUnknown)


def test_sdk_error_while_sending_leaves_outcome_unknown(ledger_client):
    tx = fake_tx(ResponseCode.SUCCESS)
    tx.execute.side_effect = RuntimeError("node unreachable")

    with pytest.raises(LedgerOutcomeUnknown, match="node unreachable"):
        ledger_client._submit("HBAR transfer", tx)


def test_receipt_wait_is_bounded(ledger_client):
    release = threading.Event()
    tx = fake_tx(ResponseCode.SUCCESS)
    tx.execute.side_effect = lambda client: release.wait(5)

    with pytest.raises(LedgerOutcomeUnknown, match="Timed out"):
        ledger_client._submit("token create 'Weather Access'", tx)
    release.set()


def test_create_token_puts_the_memo_on_the_token(ledger_client, monkeypatch):
    builder = MagicMock()
    for setter in ("set_token_name", "set_token_symbol", "set_decimals", "set_initial_supply",
                   "set_treasury_account_id", "set_supply_key", "set_memo", "set_transaction_memo"):
        getattr(builder, setter).return_value = builder
    monkeypatch.setattr(hedera_service, "TokenCreateTransaction", lambda: builder)
    monkeypatch.setattr(ledger_client, "_submit", lambda description, tx, on_submit=None: ("tx", MagicMock(token_id="0.0.9001")))

    token_id = ledger_client.create_token("Weather Access", "DATA", "Access token for dataset: 3")

    assert token_id == "0.0.9001"
    builder.set_memo.assert_called_once_with("Access token for dataset: 3")
    builder.set_transaction_memo.assert_not_called()
    builder.set_decimals.assert_called_once_with(0)
    builder.set_initial_supply.assert_called_once_with(0)


def test_constructor_requires_credentials():
    with pytest.raises(ValueError):
        HederaLedgerClient("testnet", None, None)
