# hiveminds/purchase_store.py

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import CredentialTypeAlreadyAssigned, DatasetNotFound
from .models.db_models import Dataset, Purchase, PurchaseStage, PurchaseStatus

logger = logging.getLogger(__name__)


# --- Datasets ---

def get_dataset(db: Session, dataset_id: int) -> Optional[Dataset]:
    return db.get(Dataset, dataset_id)


def create_dataset(db: Session, user_id: str, fields: Dict[str, Any]) -> Dataset:
    """Insert a dataset row. The credential type is attached separately once it exists on the ledger."""
    dataset = Dataset(user_id=user_id, **fields)
    db.add(dataset)
    db.commit()
    db.refresh(dataset)
    logger.info(f"Created dataset {dataset.id} for user {user_id}")
    return dataset


def attach_credential_type(db: Session, dataset_id: int, credential_type_id: str) -> Dataset:
    """Set the dataset's credential type id. Only succeeds while it is still unset."""
    result = db.execute(
        update(Dataset)
        .where(Dataset.id == dataset_id, Dataset.credential_type_id.is_(None))
        .values(credential_type_id=credential_type_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    dataset = db.get(Dataset, dataset_id, populate_existing=True)
    if result.rowcount == 0:
        if dataset is None:
            raise DatasetNotFound(dataset_id)
        raise CredentialTypeAlreadyAssigned(dataset_id, dataset.credential_type_id)
    logger.info(f"Dataset {dataset_id}: credential type {credential_type_id} attached")
    return dataset


# --- Purchases ---

def get_purchase(db: Session, purchase_id: str) -> Optional[Purchase]:
    return db.get(Purchase, purchase_id)


def get_purchase_by_payment_tx(db: Session, payment_tx_id: str) -> Optional[Purchase]:
    return db.execute(
        select(Purchase).where(Purchase.payment_tx_id == payment_tx_id)
    ).scalar_one_or_none()


def is_payment_used(db: Session, payment_tx_id: str) -> bool:
    """True if a completed purchase already consumed this payment."""
    found = db.execute(
        select(Purchase.id).where(
            Purchase.payment_tx_id == payment_tx_id,
            Purchase.status == PurchaseStatus.COMPLETED,
        )
    ).first()
    return found is not None


def find_completed_purchase(db: Session, dataset_id: int, user_id: str) -> Optional[Purchase]:
    return db.execute(
        select(Purchase)
        .where(
            Purchase.dataset_id == dataset_id,
            Purchase.user_id == user_id,
            Purchase.status == PurchaseStatus.COMPLETED,
        )
        .limit(1)
    ).scalar_one_or_none()


def list_purchases_for_user(db: Session, user_id: str) -> List[Purchase]:
    return list(
        db.execute(
            select(Purchase).where(Purchase.user_id == user_id).order_by(Purchase.created_at.desc())
        ).scalars()
    )


def claim_payment(db: Session, **fields) -> Optional[Purchase]:
    """
    Insert a pending purchase at stage payment_verified.

    The unique constraint on payment_tx_id makes this the point where
    concurrent claims of the same payment are serialized. Returns None
    when another request already holds the payment.
    """
    purchase = Purchase(status=PurchaseStatus.PENDING, stage=PurchaseStage.PAYMENT_VERIFIED, **fields)
    db.add(purchase)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Payment {fields.get('payment_tx_id')} already claimed by another purchase")
        return None
    db.refresh(purchase)
    logger.info(f"Purchase {purchase.id} claimed payment {purchase.payment_tx_id}")
    return purchase


def reclaim_purchase(db: Session, purchase: Purchase, stale_before: datetime) -> bool:
    """
    Take over a failed (or abandoned pending) purchase so it can be resumed.

    Conditional update: only one concurrent caller can win.
    """
    result = db.execute(
        update(Purchase)
        .where(
            Purchase.id == purchase.id,
            or_(
                Purchase.status == PurchaseStatus.FAILED,
                and_(Purchase.status == PurchaseStatus.PENDING, Purchase.updated_at < stale_before),
            ),
        )
        .values(status=PurchaseStatus.PENDING, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(purchase)
    won = result.rowcount == 1
    if won:
        logger.info(f"Purchase {purchase.id} reclaimed for resume from stage {purchase.stage}")
    return won


def advance_stage(db: Session, purchase: Purchase, stage: str, **fields) -> Purchase:
    """Record that a step finished, along with whatever it produced (tx ids)."""
    for key, value in fields.items():
        setattr(purchase, key, value)
    purchase.stage = stage
    db.commit()
    logger.debug(f"Purchase {purchase.id} advanced to stage {stage}")
    return purchase


def record_submission(db: Session, purchase: Purchase, **tx_ids) -> Purchase:
    """
    Save a ledger transaction id before the transaction is sent.

    A tx id set for a step whose stage has not been reached marks that step
    as in flight: a resume must learn its outcome before sending again.
    """
    for key, value in tx_ids.items():
        setattr(purchase, key, value)
    db.commit()
    logger.debug(f"Purchase {purchase.id} recorded submission {tx_ids}")
    return purchase


def mark_failed(db: Session, purchase: Purchase, step: str, error: str, **fields) -> Purchase:
    metadata = dict(purchase.purchase_metadata or {})
    metadata["last_error"] = {"step": step, "error": error, "at": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        setattr(purchase, key, value)
    purchase.purchase_metadata = metadata
    purchase.status = PurchaseStatus.FAILED
    db.commit()
    logger.info(f"Purchase {purchase.id} marked failed at step {step} (stage {purchase.stage})")
    return purchase


def mark_completed(db: Session, purchase: Purchase, metadata: Dict[str, Any]) -> Purchase:
    merged = dict(purchase.purchase_metadata or {})
    merged.pop("last_error", None)
    merged.update(metadata)
    purchase.purchase_metadata = merged
    purchase.status = PurchaseStatus.COMPLETED
    purchase.stage = PurchaseStage.RECORDED
    db.commit()
    logger.info(f"Purchase {purchase.id} completed")
    return purchase
