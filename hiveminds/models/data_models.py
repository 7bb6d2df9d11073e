from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, Any, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None
    verification: Optional[Dict[str, Any]] = None


class DatasetDomain(str, Enum):
    ENTERTAINMENT = "entertainment"
    FINANCE = "finance"
    HEALTHCARE = "healthcare"
    RETAIL = "retail"
    TECHNOLOGY = "technology"
    AUTOMOTIVE = "automotive"
    REAL_ESTATE = "real-estate"
    EDUCATION = "education"
    GOVERNMENT = "government"
    SOCIAL_MEDIA = "social-media"
    TELECOMMUNICATIONS = "telecommunications"
    ENERGY = "energy"
    MANUFACTURING = "manufacturing"
    AGRICULTURE = "agriculture"
    OTHER = "other"


class DatasetLicense(str, Enum):
    COMMERCIAL_UNLIMITED = "commercial-unlimited"
    COMMERCIAL_ATTRIBUTION = "commercial-attribution"
    RESEARCH_ONLY = "research-only"
    SINGLE_PROJECT = "single-project"
    ENTERPRISE = "enterprise"
    LIMITED_COMMERCIAL = "limited-commercial"


# --- Payment verification ---
class VerificationVerdict(BaseModel):
    """Result of checking a claimed payment against the mirror node. Never persisted as a row."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transaction_exists: bool = False
    amount_matches: bool = False
    recipient_correct: bool = False
    is_recent: bool = False
    is_unused: bool = False
    # Informational unless REQUIRE_PAYER_MATCH is enabled
    payer_matches: bool = False
    is_valid: bool = False
    error_reason: Optional[str] = None

    def checks(self) -> Dict[str, bool]:
        """The flags echoed back to API callers."""
        return self.model_dump(
            by_alias=True,
            include={"transaction_exists", "amount_matches", "recipient_correct", "is_recent", "is_unused", "payer_matches"},
        )


# --- Purchases ---
class PurchaseRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dataset_id: int = Field(..., description="ID of the dataset being bought.")
    buyer_wallet: str = Field(..., min_length=1, description="Hedera account that receives the access token (e.g. 0.0.1234).")
    payment_tx_id: str = Field(..., min_length=1, description="Transaction ID of the buyer's HBAR payment, SDK or mirror node format.")


class PurchaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    dataset_id: int
    buyer_wallet: str
    seller_wallet: Optional[str] = None
    credential_type_id: Optional[str] = None
    price_paid: float
    payment_tx_id: str
    seller_payout_tx_id: Optional[str] = None
    mint_tx_id: Optional[str] = None
    transfer_tx_id: Optional[str] = None
    status: str
    stage: str
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("purchase_metadata", "metadata"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PurchaseResponse(BaseModel):
    success: bool = True
    purchase: PurchaseOut
    verification: Dict[str, Any]


# --- Datasets ---
class DatasetCreate(BaseModel):
    """Dataset metadata. File bytes are uploaded to the blob store beforehand; only storage keys arrive here."""
    title: str = Field(..., min_length=1)
    description: str = ""
    domain: DatasetDomain
    data_source: str = ""
    collection_method: str = ""
    license: DatasetLicense
    price: Optional[Decimal] = Field(None, ge=0, description="Price in HBAR. Empty or 0 means free.")
    tags: Optional[str] = None
    owner_wallet: str = Field(..., min_length=1, description="Hedera account that receives the seller share.")
    train_file_key: Optional[str] = None
    test_file_key: Optional[str] = None
    validation_file_key: Optional[str] = None
    additional_files_key: Optional[str] = None
    train_file_sample_key: Optional[str] = None
    test_file_sample_key: Optional[str] = None
    sample_metadata: Optional[Dict[str, Any]] = None


class DatasetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    domain: str
    data_source: str
    collection_method: str
    license: str
    price: Optional[float] = None
    tags: Optional[str] = None
    train_file_sample_key: Optional[str] = None
    test_file_sample_key: Optional[str] = None
    sample_metadata: Optional[Dict[str, Any]] = None
    user_id: str
    owner_wallet: Optional[str] = None
    credential_type_id: Optional[str] = None
    created_at: Optional[datetime] = None


class DatasetDetailResponse(DatasetOut):
    has_purchased: bool = False


class DatasetCreateResponse(BaseModel):
    success: bool = True
    id: int
    credential_type_id: str


class DatasetAccessResponse(BaseModel):
    dataset_id: int
    wallet: Optional[str] = None
    has_purchased: bool
    on_chain_balance: Optional[int] = Field(None, description="Access token balance held by the wallet, if a wallet was given.")
    has_access: bool
