import pytest

from hiveminds.exceptions import LedgerError
from hiveminds.services.credential_issuer import CredentialIssuer

from fakes import BUYER_WALLET, CREDENTIAL_TYPE, FakeLedger


def test_credential_type_name_is_truncated_title():
    ledger = FakeLedger()
    credential_type_id = CredentialIssuer(ledger).create_credential_type(7, "Global shipping container movements")

    assert credential_type_id == CREDENTIAL_TYPE
    assert ledger.calls == [("create_token", "Global shipping cont Access", "DATA", "Access token for dataset: 7")]


def test_short_title_is_kept_whole():
    ledger = FakeLedger()
    CredentialIssuer(ledger).create_credential_type(3, "Weather")
    assert ledger.calls[0][1] == "Weather Access"


def test_issue_one_mints_then_transfers():
    ledger = FakeLedger()
    issued = CredentialIssuer(ledger).issue_one(CREDENTIAL_TYPE, BUYER_WALLET)

    assert ledger.calls == [
        ("mint_token", CREDENTIAL_TYPE, 1),
        ("transfer_token", CREDENTIAL_TYPE, BUYER_WALLET, 1),
    ]
    assert issued.mint_tx_id != issued.transfer_tx_id


def test_failed_mint_stops_the_transfer():
    ledger = FakeLedger(fail_on={"mint_token"})
    with pytest.raises(LedgerError):
        CredentialIssuer(ledger).issue_one(CREDENTIAL_TYPE, BUYER_WALLET)
    assert ledger.ops() == ["mint_token"]
