import logging
import requests
from typing import Optional

logger = logging.getLogger(__name__)

MIRROR_NODE_URLS = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
}


def mirror_node_url_for(network: str, override: Optional[str] = None) -> str:
    if override:
        return override.rstrip("/")
    try:
        return MIRROR_NODE_URLS[network]
    except KeyError:
        raise ValueError(f"No mirror node known for network '{network}'")


class MirrorNodeClient:
    """Read-only client for the Hedera mirror node REST API."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "HiveMinds/1.0",
        })

    def get_transaction(self, tx_id: str) -> requests.Response:
        """
        Fetch a transaction by its SDK-format id (0.0.N-SECONDS-NANOS).

        Returns the raw response; callers decide what a non-2xx status means.
        Network errors propagate as requests exceptions.
        """
        url = f"{self.base_url}/api/v1/transactions/{tx_id}"
        logger.debug(f"GET {url}")
        response = self.session.get(url, timeout=self.timeout)
        logger.debug(f"Mirror node responded {response.status_code} for transaction {tx_id}")
        return response

    def get_token_balance(self, account_id: str, token_id: str) -> int:
        """Balance of token_id held by account_id. 0 when the account is not associated with the token."""
        url = f"{self.base_url}/api/v1/accounts/{account_id}/tokens"
        response = self.session.get(url, params={"token.id": token_id}, timeout=self.timeout)
        if response.status_code == 404:
            logger.info(f"Account {account_id} not found on mirror node")
            return 0
        response.raise_for_status()
        for entry in response.json().get("tokens", []):
            if entry.get("token_id") == token_id:
                return int(entry.get("balance", 0))
        return 0
