import logging
import re
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

import requests

from .. import config
from ..models.data_models import VerificationVerdict
from .mirror_node_service import MirrorNodeClient

logger = logging.getLogger(__name__)

TINYBARS_PER_HBAR = 100_000_000

# 0.0.1234-1753915564-688173084 (SDK) and 0.0.1234@1753915564.688173084 (mirror node / wallets)
_SDK_TX_ID = re.compile(r"^(\d+)\.(\d+)\.(\d+)-(\d+)-(\d{1,9})$")
_EXPLORER_TX_ID = re.compile(r"^(\d+)\.(\d+)\.(\d+)@(\d+)\.(\d{1,9})$")

# Statuses worth polling again: not indexed yet, or a transient mirror node problem
_RETRYABLE_STATUSES = {404, 429, 500, 502, 503, 504}


def normalize_transaction_id(tx_id: str) -> str:
    """
    Rewrite a transaction id to the SDK form the mirror node lookup expects.

    Both encodings of the same transaction normalize to the same string.
    Raises ValueError for anything that is neither form.
    """
    if not isinstance(tx_id, str):
        raise ValueError("transaction id must be a string")
    candidate = tx_id.strip()
    match = _SDK_TX_ID.match(candidate) or _EXPLORER_TX_ID.match(candidate)
    if not match:
        raise ValueError(f"'{tx_id}' is not a valid Hedera transaction id")
    shard, realm, num, seconds, nanos = (int(part) for part in match.groups())
    return f"{shard}.{realm}.{num}-{seconds}-{nanos:09d}"


def hbar_to_tinybars(amount) -> int:
    """Convert an HBAR amount (Decimal, str, int or float) to whole tinybars."""
    return int((Decimal(str(amount)) * TINYBARS_PER_HBAR).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PaymentVerifier:
    """
    Decides whether a claimed transaction is a sufficient, fresh, unused
    payment into the platform's custodial account.

    verify() never raises; every outcome is reported through the verdict.
    """

    def __init__(
        self,
        mirror_node: MirrorNodeClient,
        platform_account_id: str,
        is_payment_used: Callable[[str], bool],
        max_attempts: int = config.VERIFY_MAX_ATTEMPTS,
        initial_delay: float = config.VERIFY_INITIAL_DELAY_SECONDS,
        backoff_factor: float = config.VERIFY_BACKOFF_FACTOR,
        max_delay: float = config.VERIFY_MAX_DELAY_SECONDS,
        max_age_seconds: int = config.PAYMENT_MAX_AGE_SECONDS,
        tolerance_tinybars: int = config.AMOUNT_TOLERANCE_TINYBARS,
        require_payer_match: bool = config.REQUIRE_PAYER_MATCH,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.mirror_node = mirror_node
        self.platform_account_id = platform_account_id
        self.is_payment_used = is_payment_used
        self.max_attempts = max(1, max_attempts)
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.max_age_seconds = max_age_seconds
        self.tolerance_tinybars = tolerance_tinybars
        self.require_payer_match = require_payer_match
        self.sleep = sleep
        self.clock = clock

    def verify(self, payment_tx_id: str, expected_amount, buyer_wallet: str) -> VerificationVerdict:
        verdict = VerificationVerdict()

        try:
            try:
                tx_id = normalize_transaction_id(payment_tx_id)
            except ValueError as e:
                logger.warning(f"Rejecting malformed payment id {payment_tx_id!r}: {e}")
                verdict.error_reason = f"Malformed transaction ID: {e}"
                return verdict

            if tx_id != payment_tx_id:
                logger.info(f"Normalized payment id {payment_tx_id} -> {tx_id}")

            response = self._fetch_transaction(tx_id)
            if not response.ok:
                logger.warning(f"Mirror node lookup for {tx_id} failed: {response.status_code} {response.text[:200]}")
                verdict.error_reason = f"Transaction not found in Mirror Node ({response.status_code}: {response.reason})"
                return verdict

            transactions = response.json().get("transactions") or []
            if not transactions:
                verdict.error_reason = "Transaction not found in Mirror Node (empty result)"
                return verdict

            verdict.transaction_exists = True
            transaction = transactions[0]

            if transaction.get("result") != "SUCCESS":
                verdict.error_reason = f"Transaction was not successful: {transaction.get('result')}"
                return verdict

            if transaction.get("name") != "CRYPTOTRANSFER":
                verdict.error_reason = f"Transaction is not a crypto transfer: {transaction.get('name')}"
                return verdict

            transfers = transaction.get("transfers") or []
            self._check_amount(verdict, transfers, expected_amount)
            verdict.payer_matches = self._payer_debited(transfers, buyer_wallet)
            if not verdict.payer_matches:
                logger.warning(f"Payment {tx_id}: buyer wallet {buyer_wallet} is not a payer in the transfer list")

            verdict.is_recent = self._is_recent(transaction.get("consensus_timestamp"))
            verdict.is_unused = not self.is_payment_used(tx_id)

            verdict.is_valid = (
                verdict.transaction_exists
                and verdict.amount_matches
                and verdict.recipient_correct
                and verdict.is_recent
                and verdict.is_unused
                and (verdict.payer_matches or not self.require_payer_match)
            )

            if not verdict.is_valid and not verdict.error_reason:
                verdict.error_reason = f"Verification failed: {', '.join(self._failed_checks(verdict))}"

            logger.info(f"Payment {tx_id} verified: valid={verdict.is_valid} {verdict.checks()}")
            return verdict

        except Exception as e:
            logger.error(f"Unexpected error verifying payment {payment_tx_id}: {e}", exc_info=True)
            verdict.is_valid = False
            verdict.error_reason = f"Verification error: {e}"
            return verdict

    # --- Helpers ---

    def _fetch_transaction(self, tx_id: str) -> requests.Response:
        """Poll the mirror node with exponential backoff until the transaction is indexed or attempts run out."""
        delay = self.initial_delay
        for attempt in range(1, self.max_attempts + 1):
            last_attempt = attempt == self.max_attempts
            try:
                response = self.mirror_node.get_transaction(tx_id)
            except (requests.ConnectionError, requests.Timeout) as e:
                if last_attempt:
                    raise
                logger.info(f"Mirror node request for {tx_id} failed ({e}); retrying in {delay:.1f}s")
            else:
                if response.status_code not in _RETRYABLE_STATUSES or last_attempt:
                    return response
                logger.info(f"Transaction {tx_id} not available yet ({response.status_code}), attempt {attempt}/{self.max_attempts}; retrying in {delay:.1f}s")
            self.sleep(delay)
            delay = min(delay * self.backoff_factor, self.max_delay)

    def _check_amount(self, verdict: VerificationVerdict, transfers: List[Dict[str, Any]], expected_amount) -> None:
        expected_tinybars = hbar_to_tinybars(expected_amount)
        platform_transfer = next((t for t in transfers if t.get("account") == self.platform_account_id), None)
        if platform_transfer is None:
            logger.warning(f"No transfer to platform account {self.platform_account_id} in transaction")
            return

        received = int(platform_transfer.get("amount", 0))
        if received > 0 and abs(received - expected_tinybars) <= self.tolerance_tinybars:
            verdict.recipient_correct = True
            verdict.amount_matches = True
        else:
            logger.warning(f"Platform transfer amount mismatch. Expected: {expected_tinybars} Got: {received}")

    @staticmethod
    def _payer_debited(transfers: List[Dict[str, Any]], buyer_wallet: Optional[str]) -> bool:
        return any(t.get("account") == buyer_wallet and int(t.get("amount", 0)) < 0 for t in transfers)

    def _is_recent(self, consensus_timestamp) -> bool:
        if consensus_timestamp is None:
            return False
        age = self.clock() - float(consensus_timestamp)
        return age <= self.max_age_seconds

    def _failed_checks(self, verdict: VerificationVerdict) -> List[str]:
        failed = []
        if not verdict.amount_matches:
            failed.append("amount mismatch")
        if not verdict.recipient_correct:
            failed.append("wrong recipient")
        if not verdict.is_recent:
            failed.append("transaction too old")
        if not verdict.is_unused:
            failed.append("transaction already used")
        if self.require_payer_match and not verdict.payer_matches:
            failed.append("payer mismatch")
        return failed
