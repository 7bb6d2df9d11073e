import pytest
import requests
from unittest.mock import MagicMock

from hiveminds.services.mirror_node_service import MirrorNodeClient, mirror_node_url_for

from fakes import BUYER_WALLET, CREDENTIAL_TYPE, PAYMENT_TX_SDK, make_response


@pytest.fixture()
def session():
    mock = MagicMock(spec=requests.Session)
    mock.headers = {}
    return mock


def test_url_for_known_networks():
    assert mirror_node_url_for("testnet") == "https://testnet.mirrornode.hedera.com"
    assert mirror_node_url_for("mainnet") == "https://mainnet-public.mirrornode.hedera.com"


def test_url_override_wins():
    assert mirror_node_url_for("testnet", "http://localhost:5551/") == "http://localhost:5551"


def test_url_for_unknown_network():
    with pytest.raises(ValueError):
        mirror_node_url_for("previewnet-9")


def test_get_transaction_uses_timeout_and_returns_raw_response(session):
    session.get.return_value = make_response(404)
    client = MirrorNodeClient("https://testnet.mirrornode.hedera.com/", timeout=3, session=session)

    response = client.get_transaction(PAYMENT_TX_SDK)

    assert response.status_code == 404
    session.get.assert_called_once_with(
        f"https://testnet.mirrornode.hedera.com/api/v1/transactions/{PAYMENT_TX_SDK}", timeout=3,
    )
    assert session.headers["Accept"] == "application/json"


def test_token_balance_is_read_from_matching_entry(session):
    session.get.return_value = make_response(200, {"tokens": [
        {"token_id": "0.0.1", "balance": 50},
        {"token_id": CREDENTIAL_TYPE, "balance": 2},
    ]})
    client = MirrorNodeClient("https://testnet.mirrornode.hedera.com", session=session)

    assert client.get_token_balance(BUYER_WALLET, CREDENTIAL_TYPE) == 2
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"token.id": CREDENTIAL_TYPE}


def test_token_balance_is_zero_when_not_associated(session):
    session.get.return_value = make_response(200, {"tokens": []})
    client = MirrorNodeClient("https://testnet.mirrornode.hedera.com", session=session)
    assert client.get_token_balance(BUYER_WALLET, CREDENTIAL_TYPE) == 0


def test_token_balance_is_zero_for_unknown_account(session):
    session.get.return_value = make_response(404)
    client = MirrorNodeClient("https://testnet.mirrornode.hedera.com", session=session)
    assert client.get_token_balance("0.0.999999", CREDENTIAL_TYPE) == 0


def test_token_balance_server_error_raises(session):
    session.get.return_value = make_response(503)
    client = MirrorNodeClient("https://testnet.mirrornode.hedera.com", session=session)
    with pytest.raises(requests.HTTPError):
        client.get_token_balance(BUYER_WALLET, CREDENTIAL_TYPE)
