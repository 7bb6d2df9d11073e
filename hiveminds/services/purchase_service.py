# hiveminds/services/purchase_service.py

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN
from typing import Callable, NamedTuple, Optional, Tuple

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from .. import purchase_store
from ..exceptions import (
    DatasetNotFound,
    DatasetNotPurchasable,
    LedgerError,
    LedgerOperationFailed,
    LedgerOutcomeUnknown,
    PaymentRejected,
    PersistenceFailed,
)
from ..models.data_models import VerificationVerdict
from ..models.db_models import Dataset, Purchase, PurchaseStage, PurchaseStatus
from .credential_issuer import CredentialIssuer
from .payment_verifier import PaymentVerifier, TINYBARS_PER_HBAR, normalize_transaction_id

logger = logging.getLogger(__name__)

_SUBUNIT = Decimal("0.00000001")


class PurchaseResult(NamedTuple):
    purchase: Purchase
    verification: VerificationVerdict


def split_price(price: Decimal, seller_share: Decimal) -> Tuple[Decimal, Decimal]:
    """Return (seller_amount, platform_fee). The fee is whatever the seller share leaves in the custodial account."""
    seller_amount = (price * seller_share).quantize(_SUBUNIT, rounding=ROUND_DOWN)
    return seller_amount, price - seller_amount


class PurchaseService:
    """
    Turns a verified payment into a delivered access token.

    Steps run strictly in order and each one is persisted on the purchase
    row before the next starts:

        payment_verified -> seller_paid -> credential_minted
            -> credential_transferred -> recorded

    A failed or abandoned purchase is resumed from its last finished step
    when the same payment is submitted again. Ledger effects are never
    rolled back.

    Each ledger transaction id is saved before the transaction is sent.
    On resume, a saved id whose stage was never reached is looked up on
    the mirror node first; it is only sent again once that transaction is
    known to have failed or expired.
    """

    def __init__(
        self,
        db: Session,
        verifier: PaymentVerifier,
        issuer: CredentialIssuer,
        ledger,
        network: str = config.HEDERA_NETWORK,
        seller_share: Decimal = config.SELLER_SHARE,
        stale_claim_seconds: int = config.STALE_CLAIM_SECONDS,
        ledger_tx_expiry_seconds: int = config.LEDGER_TX_EXPIRY_SECONDS,
        mirror_node=None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.verifier = verifier
        self.issuer = issuer
        self.ledger = ledger
        self.network = network
        self.seller_share = seller_share
        self.stale_claim_seconds = stale_claim_seconds
        self.ledger_tx_expiry_seconds = ledger_tx_expiry_seconds
        # Used to learn the outcome of transactions sent by an interrupted attempt
        self.mirror_node = mirror_node if mirror_node is not None else getattr(verifier, "mirror_node", None)
        self.now = now

    def purchase(self, dataset_id: int, buyer_wallet: str, payment_tx_id: str, requesting_user_id: str) -> PurchaseResult:
        dataset = purchase_store.get_dataset(self.db, dataset_id)
        if dataset is None:
            raise DatasetNotFound(dataset_id)

        price = Decimal(dataset.price or 0)
        if not dataset.credential_type_id:
            raise DatasetNotPurchasable(dataset_id, "dataset has no access token type")
        if price > 0 and not dataset.owner_wallet:
            raise DatasetNotPurchasable(dataset_id, "dataset has no seller wallet")

        try:
            payment_key = normalize_transaction_id(payment_tx_id)
        except ValueError:
            payment_key = None

        existing = purchase_store.get_purchase_by_payment_tx(self.db, payment_key) if payment_key else None
        if existing is not None and existing.status in (PurchaseStatus.PENDING, PurchaseStatus.FAILED):
            purchase, verdict = self._resume(existing, dataset, buyer_wallet, requesting_user_id)
        else:
            verdict = self.verifier.verify(payment_tx_id, price, buyer_wallet)
            if not verdict.is_valid:
                logger.warning(f"Payment {payment_tx_id} rejected for dataset {dataset_id}: {verdict.error_reason}")
                raise PaymentRejected(verdict)
            purchase = self._claim(dataset, price, buyer_wallet, payment_key, payment_tx_id, requesting_user_id, verdict)

        try:
            completed = self._run(purchase)
        except (LedgerOperationFailed, PersistenceFailed) as e:
            e.verification = verdict
            raise
        return PurchaseResult(completed, verdict)

    # --- Claiming ---

    def _claim(self, dataset: Dataset, price: Decimal, buyer_wallet: str, payment_key: str,
               payment_tx_id: str, user_id: str, verdict: VerificationVerdict) -> Purchase:
        metadata = {"verification": verdict.model_dump(by_alias=True), "network": self.network}
        if payment_key != payment_tx_id:
            metadata["submitted_payment_tx_id"] = payment_tx_id

        purchase = purchase_store.claim_payment(
            self.db,
            user_id=user_id,
            dataset_id=dataset.id,
            buyer_wallet=buyer_wallet,
            seller_wallet=dataset.owner_wallet,
            credential_type_id=dataset.credential_type_id,
            price_paid=price,
            payment_tx_id=payment_key,
            purchase_metadata=metadata,
        )
        if purchase is None:
            # Lost the race against a concurrent request for the same payment
            rejected = verdict.model_copy(update={
                "is_unused": False,
                "is_valid": False,
                "error_reason": "Verification failed: transaction already used",
            })
            raise PaymentRejected(rejected)
        return purchase

    def _resume(self, existing: Purchase, dataset: Dataset, buyer_wallet: str, user_id: str) -> Tuple[Purchase, VerificationVerdict]:
        stored = (existing.purchase_metadata or {}).get("verification")
        verdict = VerificationVerdict.model_validate(stored) if stored else VerificationVerdict(transaction_exists=True)

        if existing.dataset_id != dataset.id or existing.buyer_wallet != buyer_wallet or existing.user_id != user_id:
            logger.warning(f"Payment {existing.payment_tx_id} is held by purchase {existing.id} with different details")
            raise PaymentRejected(self._reused(verdict, "Payment already claimed by a different purchase"))

        stale_before = self.now() - timedelta(seconds=self.stale_claim_seconds)
        if not purchase_store.reclaim_purchase(self.db, existing, stale_before):
            raise PaymentRejected(self._reused(verdict, "Payment is already being processed"))

        logger.info(f"Resuming purchase {existing.id} after stage {existing.stage}")
        return existing, verdict

    @staticmethod
    def _reused(verdict: VerificationVerdict, reason: str) -> VerificationVerdict:
        return verdict.model_copy(update={"is_unused": False, "is_valid": False, "error_reason": reason})

    # --- Steps ---

    def _run(self, purchase: Purchase) -> Purchase:
        price = Decimal(purchase.price_paid)
        seller_amount, platform_fee = split_price(price, self.seller_share)

        if seller_amount > 0:
            tinybars = int((seller_amount * TINYBARS_PER_HBAR).to_integral_value(rounding=ROUND_DOWN))
            self._step(
                purchase, PurchaseStage.SELLER_PAID, "seller_payout", "seller_payout_tx_id",
                lambda on_submit: self.ledger.transfer_hbar(purchase.seller_wallet, tinybars, on_submit=on_submit),
            )
        elif not PurchaseStage.reached(purchase.stage, PurchaseStage.SELLER_PAID):
            self._persist(purchase, PurchaseStage.SELLER_PAID)

        self._step(
            purchase, PurchaseStage.CREDENTIAL_MINTED, "credential_mint", "mint_tx_id",
            lambda on_submit: self.issuer.mint_one(purchase.credential_type_id, on_submit=on_submit),
        )
        self._step(
            purchase, PurchaseStage.CREDENTIAL_TRANSFERRED, "credential_transfer", "transfer_tx_id",
            lambda on_submit: self.issuer.transfer_one(purchase.credential_type_id, purchase.buyer_wallet, on_submit=on_submit),
        )

        metadata = {
            "platform_fee": float(platform_fee),
            "seller_amount": float(seller_amount),
            "seller_payout_tx_id": purchase.seller_payout_tx_id,
            "network": "mainnet" if self.network == "mainnet" else "testnet",
        }
        try:
            purchase_store.mark_completed(self.db, purchase, metadata)
        except SQLAlchemyError as e:
            self._persistence_failure(purchase, "recording completed purchase", e)

        logger.info(f"Purchase {purchase.id} completed: dataset {purchase.dataset_id} -> {purchase.buyer_wallet}")
        return purchase

    def _step(self, purchase: Purchase, stage: str, step: str, tx_field: str, submit: Callable[[Callable[[str], None]], str]):
        if PurchaseStage.reached(purchase.stage, stage):
            return
        tx_id = getattr(purchase, tx_field)
        if tx_id and self._already_applied(purchase, step, tx_id):
            logger.info(f"Purchase {purchase.id}: {step} already on the ledger as {tx_id}")
        else:
            tx_id = self._ledger_step(purchase, step, tx_field, submit)
        self._persist(purchase, stage, **{tx_field: tx_id})

    def _ledger_step(self, purchase: Purchase, step: str, tx_field: str, submit: Callable[[Callable[[str], None]], str]) -> str:
        def record(tx_id: str):
            try:
                purchase_store.record_submission(self.db, purchase, **{tx_field: tx_id})
            except SQLAlchemyError as e:
                self._persistence_failure(purchase, f"recording {step} submission", e)

        try:
            return submit(record)
        except PersistenceFailed:
            raise
        except LedgerOutcomeUnknown as e:
            # Keep the recorded tx id; a resume looks it up before sending again
            self._fail(purchase, step, e)
        except LedgerError as e:
            self._fail(purchase, step, e, **{tx_field: None})
        except Exception as e:
            self._fail(purchase, step, e)

    def _already_applied(self, purchase: Purchase, step: str, tx_id: str) -> bool:
        """
        Outcome of a transaction sent by an earlier attempt that never recorded its receipt.

        True if it reached consensus with SUCCESS, False if it failed or can
        no longer execute. Raises LedgerOperationFailed while neither is known.
        """
        try:
            result = self._transaction_result(tx_id)
        except (requests.RequestException, ValueError) as e:
            self._fail(purchase, step, LedgerOutcomeUnknown(f"could not look up earlier transaction {tx_id}: {e}"))

        if result == "SUCCESS":
            return True
        if result is not None:
            logger.warning(f"Purchase {purchase.id}: earlier {step} transaction {tx_id} failed with {result}; sending again")
            return False

        valid_start = int(normalize_transaction_id(tx_id).split("-")[1])
        if self.now().timestamp() > valid_start + self.ledger_tx_expiry_seconds:
            logger.warning(f"Purchase {purchase.id}: earlier {step} transaction {tx_id} never reached consensus; sending again")
            return False

        self._fail(purchase, step, LedgerOutcomeUnknown(f"outcome of earlier transaction {tx_id} not known yet, retry later"))

    def _transaction_result(self, tx_id: str) -> Optional[str]:
        """Consensus result of a ledger transaction, or None when the mirror node has no record of it."""
        if self.mirror_node is None:
            raise ValueError("no mirror node client to look up transactions")
        response = self.mirror_node.get_transaction(normalize_transaction_id(tx_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        results = [t.get("result") for t in response.json().get("transactions") or []]
        if not results:
            return None
        # Duplicate submissions of one id show up as extra DUPLICATE_TRANSACTION entries
        return "SUCCESS" if "SUCCESS" in results else results[0]

    def _fail(self, purchase: Purchase, step: str, error: Exception, **fields):
        purchase_id, stage = purchase.id, purchase.stage
        logger.error(f"Purchase {purchase_id}: {step} failed after stage {stage}: {error}", exc_info=True)
        try:
            purchase_store.mark_failed(self.db, purchase, step, str(error), **fields)
        except SQLAlchemyError as db_err:
            self.db.rollback()
            logger.critical(f"Purchase {purchase_id}: could not mark failed after {step} error: {db_err}. Row left pending at stage {stage}.")
        raise LedgerOperationFailed(step, str(error), purchase_id) from error

    def _persist(self, purchase: Purchase, stage: str, **fields):
        try:
            purchase_store.advance_stage(self.db, purchase, stage, **fields)
        except SQLAlchemyError as e:
            self._persistence_failure(purchase, f"recording stage {stage}", e, fields)

    def _persistence_failure(self, purchase: Purchase, action: str, error: Exception, pending_fields: Optional[dict] = None):
        # Read everything before rollback expires the instance
        purchase_id = purchase.id
        context = f"Dataset {purchase.dataset_id}, buyer {purchase.buyer_wallet}, seller {purchase.seller_wallet}"
        tx_ids = {
            "payment_tx_id": purchase.payment_tx_id,
            "seller_payout_tx_id": purchase.seller_payout_tx_id,
            "mint_tx_id": purchase.mint_tx_id,
            "transfer_tx_id": purchase.transfer_tx_id,
        }
        tx_ids.update(pending_fields or {})
        self.db.rollback()
        logger.critical(
            f"MANUAL RECONCILIATION REQUIRED: purchase {purchase_id} failed {action} after ledger operations succeeded. "
            f"{context}, tx ids {tx_ids}. Error: {error}",
            exc_info=True,
        )
        raise PersistenceFailed(f"Failed {action} for purchase {purchase_id}", tx_ids) from error
