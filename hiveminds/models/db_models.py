import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from ..database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class PurchaseStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, COMPLETED, FAILED, REFUNDED)


class PurchaseStage:
    """Ordered steps of a purchase. A row's stage is the last step that finished."""
    PAYMENT_VERIFIED = "payment_verified"
    SELLER_PAID = "seller_paid"
    CREDENTIAL_MINTED = "credential_minted"
    CREDENTIAL_TRANSFERRED = "credential_transferred"
    RECORDED = "recorded"

    ORDER = (PAYMENT_VERIFIED, SELLER_PAID, CREDENTIAL_MINTED, CREDENTIAL_TRANSFERRED, RECORDED)

    @classmethod
    def reached(cls, current: str, target: str) -> bool:
        return cls.ORDER.index(current) >= cls.ORDER.index(target)


class Dataset(Base):
    __tablename__ = "dataset"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    domain = Column(String(64), nullable=False)
    data_source = Column(String(255), nullable=False, default="")
    collection_method = Column(String(255), nullable=False, default="")
    license = Column(String(64), nullable=False)
    price = Column(Numeric(18, 8), nullable=True) # NULL or 0 means free
    tags = Column(String(512), nullable=True)

    # Storage keys in the blob store (private full files)
    train_file_key = Column(String(512), nullable=True)
    test_file_key = Column(String(512), nullable=True)
    validation_file_key = Column(String(512), nullable=True)
    additional_files_key = Column(String(512), nullable=True)
    # Public samples
    train_file_sample_key = Column(String(512), nullable=True)
    test_file_sample_key = Column(String(512), nullable=True)
    sample_metadata = Column(JSON, nullable=True)

    user_id = Column(String(64), nullable=False, index=True)
    owner_wallet = Column(String(64), nullable=True)
    credential_type_id = Column(String(64), nullable=True) # Assigned once, right after creation
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<Dataset {self.id} {self.title!r}>"


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        Index("ix_purchases_dataset_user_status", "dataset_id", "user_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    dataset_id = Column(Integer, ForeignKey("dataset.id"), nullable=False)
    buyer_wallet = Column(String(64), nullable=False)
    seller_wallet = Column(String(64), nullable=True)
    credential_type_id = Column(String(64), nullable=True)
    price_paid = Column(Numeric(18, 8), nullable=False)
    # One row per payment: the payment transaction is a single-use capability
    payment_tx_id = Column(String(128), nullable=False, unique=True)
    seller_payout_tx_id = Column(String(128), nullable=True)
    mint_tx_id = Column(String(128), nullable=True)
    transfer_tx_id = Column(String(128), nullable=True)
    status = Column(String(16), nullable=False, default=PurchaseStatus.PENDING)
    stage = Column(String(32), nullable=False, default=PurchaseStage.PAYMENT_VERIFIED)
    purchase_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<Purchase {self.id} {self.status}/{self.stage}>"
