import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from hiero_sdk_python import (
    AccountId,
    Client,
    Network,
    PrivateKey,
    ResponseCode,
    TokenCreateTransaction,
    TokenId,
    TokenMintTransaction,
    TransferTransaction,
)

from ..exceptions import LedgerError, LedgerOutcomeUnknown

logger = logging.getLogger(__name__)


class HederaLedgerClient:
    """
    Signs and submits transactions as the platform's custodial account.

    Every operation waits for the receipt and returns the transaction id.
    A failure known to have had no effect raises LedgerError; a send whose
    receipt never arrived raises LedgerOutcomeUnknown.

    Operations that move value take an on_submit callback. It receives the
    transaction id after signing and before sending, so callers can record
    it first. If on_submit raises, nothing is sent.

    Constructed once by the application and closed on shutdown.
    """

    def __init__(self, network: str, account_id: str, private_key: str, timeout: float = 60.0):
        if not account_id or not private_key:
            raise ValueError("Custodial account id and private key are required for ledger operations")
        self.network = network
        self.account_id = account_id
        self.timeout = timeout
        self._operator_id = AccountId.from_string(account_id)
        self._operator_key = PrivateKey.from_string(private_key)
        self._client = Client(Network(network))
        self._client.set_operator(self._operator_id, self._operator_key)
        # Receipt waits run here so they can be bounded by a timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hedera")
        logger.info(f"Hedera client ready on {network} with operator {account_id}")

    def close(self):
        self._executor.shutdown(wait=False)
        close = getattr(self._client, "close", None)
        if close:
            close()

    # --- Operations ---

    def transfer_hbar(self, recipient: str, tinybars: int, on_submit: Optional[Callable[[str], None]] = None) -> str:
        """Move tinybars from the custodial account to recipient."""
        recipient_id = AccountId.from_string(recipient)
        tx = (
            TransferTransaction()
            .add_hbar_transfer(self._operator_id, -tinybars)
            .add_hbar_transfer(recipient_id, tinybars)
        )
        tx_id, _ = self._submit(f"HBAR transfer of {tinybars} tinybars to {recipient}", tx, on_submit)
        return tx_id

    def create_token(self, name: str, symbol: str, memo: str) -> str:
        """Create a 0-decimal, 0-supply fungible token with the custodial account as treasury and supply key."""
        tx = (
            TokenCreateTransaction()
            .set_token_name(name)
            .set_token_symbol(symbol)
            .set_decimals(0)
            .set_initial_supply(0)
            .set_treasury_account_id(self._operator_id)
            .set_supply_key(self._operator_key)
            .set_memo(memo)
        )
        _, receipt = self._submit(f"token create '{name}'", tx)
        token_id = str(receipt.token_id)
        logger.info(f"Created token {token_id} ({name})")
        return token_id

    def mint_token(self, token_id: str, amount: int, on_submit: Optional[Callable[[str], None]] = None) -> str:
        tx = (
            TokenMintTransaction()
            .set_token_id(TokenId.from_string(token_id))
            .set_amount(amount)
        )
        tx_id, _ = self._submit(f"mint {amount} of {token_id}", tx, on_submit)
        return tx_id

    def transfer_token(self, token_id: str, recipient: str, amount: int, on_submit: Optional[Callable[[str], None]] = None) -> str:
        """Move amount units of token_id from the treasury (custodial account) to recipient."""
        token = TokenId.from_string(token_id)
        tx = (
            TransferTransaction()
            .add_token_transfer(token, self._operator_id, -amount)
            .add_token_transfer(token, AccountId.from_string(recipient), amount)
        )
        tx_id, _ = self._submit(f"transfer {amount} of {token_id} to {recipient}", tx, on_submit)
        return tx_id

    # --- Internals ---

    def _submit(self, description: str, tx, on_submit: Optional[Callable[[str], None]] = None):
        try:
            tx.freeze_with(self._client)
            tx.sign(self._operator_key)
            tx_id = str(tx.transaction_id)
        except Exception as e:
            logger.error(f"Failed to prepare {description}: {e}", exc_info=True)
            raise LedgerError(f"Failed to prepare {description}: {e}") from e

        if on_submit is not None:
            on_submit(tx_id)

        logger.info(f"Submitting {description} (tx {tx_id})")
        receipt = self._run_with_timeout(lambda: tx.execute(self._client), description)

        if receipt.status != ResponseCode.SUCCESS:
            status_name = getattr(ResponseCode(receipt.status), "name", receipt.status)
            logger.error(f"{description} failed with status {status_name} (tx {tx_id})")
            raise LedgerError(f"{description} failed with status {status_name}")

        logger.info(f"{description} confirmed (tx {tx_id})")
        return tx_id, receipt

    def _run_with_timeout(self, call: Callable, description: str):
        future = self._executor.submit(call)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            logger.error(f"Timed out after {self.timeout}s waiting for {description}")
            raise LedgerOutcomeUnknown(f"Timed out after {self.timeout}s waiting for {description}")
        except Exception as e:
            logger.error(f"{description} raised: {e}", exc_info=True)
            raise LedgerOutcomeUnknown(f"{description} failed: {e}") from e
