import logging
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)

CREDENTIAL_SYMBOL = "DATA"


class IssuedCredential(NamedTuple):
    mint_tx_id: str
    transfer_tx_id: str


class CredentialIssuer:
    """
    Access tokens for datasets: one fungible token type per dataset,
    one unit per buyer. Holding a unit means the buyer has access.
    """

    def __init__(self, ledger):
        self.ledger = ledger

    def create_credential_type(self, dataset_id, title: str) -> str:
        """Create the dataset's token type with zero supply. Called once, at dataset creation."""
        name = f"{title[:20]} Access"
        memo = f"Access token for dataset: {dataset_id}"
        credential_type_id = self.ledger.create_token(name=name, symbol=CREDENTIAL_SYMBOL, memo=memo)
        logger.info(f"Dataset {dataset_id}: created credential type {credential_type_id}")
        return credential_type_id

    def mint_one(self, credential_type_id: str, on_submit: Optional[Callable[[str], None]] = None) -> str:
        """Mint a single unit into the treasury. Returns once the mint is confirmed."""
        return self.ledger.mint_token(credential_type_id, 1, on_submit=on_submit)

    def transfer_one(self, credential_type_id: str, recipient_wallet: str, on_submit: Optional[Callable[[str], None]] = None) -> str:
        return self.ledger.transfer_token(credential_type_id, recipient_wallet, 1, on_submit=on_submit)

    def issue_one(self, credential_type_id: str, recipient_wallet: str) -> IssuedCredential:
        """Mint one unit, then transfer it to recipient_wallet. The transfer only runs after the mint receipt."""
        mint_tx_id = self.mint_one(credential_type_id)
        transfer_tx_id = self.transfer_one(credential_type_id, recipient_wallet)
        logger.info(f"Issued 1 unit of {credential_type_id} to {recipient_wallet} (mint {mint_tx_id}, transfer {transfer_tx_id})")
        return IssuedCredential(mint_tx_id=mint_tx_id, transfer_tx_id=transfer_tx_id)
