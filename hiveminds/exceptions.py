from typing import Dict, Optional


class MarketplaceError(Exception):
    """Base class for errors raised by the marketplace services."""


class DatasetNotFound(MarketplaceError):
    def __init__(self, dataset_id):
        super().__init__(f"Dataset {dataset_id} not found")
        self.dataset_id = dataset_id


class DatasetNotPurchasable(MarketplaceError):
    """The dataset is missing what a sale needs (access token type, seller wallet)."""

    def __init__(self, dataset_id, reason: str):
        super().__init__(f"Dataset {dataset_id} cannot be purchased: {reason}")
        self.dataset_id = dataset_id


class PaymentRejected(MarketplaceError):
    """The claimed payment did not pass verification. Safe to retry with a corrected payment."""

    def __init__(self, verdict, reason: Optional[str] = None):
        super().__init__(reason or verdict.error_reason or "Payment verification failed")
        self.verdict = verdict


class LedgerError(MarketplaceError):
    """A ledger operation failed and is known not to have taken effect (rejected before submit, or a non-SUCCESS receipt)."""


class LedgerOutcomeUnknown(LedgerError):
    """The transaction was sent but no receipt came back. It may or may not have reached consensus."""


class LedgerOperationFailed(MarketplaceError):
    """A ledger step of a purchase failed after the payment was verified."""

    def __init__(self, step: str, message: str, purchase_id: Optional[str] = None):
        super().__init__(f"{step} failed: {message}")
        self.step = step
        self.purchase_id = purchase_id
        self.verification = None


class PersistenceFailed(MarketplaceError):
    """A database write failed after ledger effects already happened."""

    def __init__(self, message: str, tx_ids: Optional[Dict[str, Optional[str]]] = None):
        super().__init__(message)
        self.tx_ids = tx_ids or {}
        self.verification = None


class CredentialTypeAlreadyAssigned(MarketplaceError):
    def __init__(self, dataset_id, credential_type_id):
        super().__init__(f"Dataset {dataset_id} already has credential type {credential_type_id}")
        self.dataset_id = dataset_id
        self.credential_type_id = credential_type_id
