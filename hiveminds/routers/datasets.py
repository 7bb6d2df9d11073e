from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging
import requests

from .. import purchase_store
from ..deps import get_credential_issuer, get_db, get_mirror_node, get_purchase_service
from ..exceptions import (
    DatasetNotFound,
    DatasetNotPurchasable,
    LedgerError,
    LedgerOperationFailed,
    PaymentRejected,
    PersistenceFailed,
)
from ..models.data_models import (
    DatasetAccessResponse,
    DatasetCreate,
    DatasetCreateResponse,
    DatasetDetailResponse,
    DatasetOut,
    ErrorResponse,
    PurchaseOut,
    PurchaseRequest,
    PurchaseResponse,
)
from ..routers.auth import get_current_user
from ..services.credential_issuer import CredentialIssuer
from ..services.mirror_node_service import MirrorNodeClient
from ..services.purchase_service import PurchaseService

router = APIRouter(
    prefix="/datasets",
    tags=["Datasets"],
)

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, details=None, verification=None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details, verification=verification)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@router.post(
    "",
    response_model=DatasetCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse, "description": "Access token type could not be created"},
    }
)
def create_dataset(
    dataset_in: DatasetCreate,
    current_user: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    issuer: CredentialIssuer = Depends(get_credential_issuer),
):
    """
    Registers a dataset and creates its access token type on Hedera.

    Files are uploaded to the blob store before this call; only their
    storage keys are sent here.
    """
    logger.info(f"User {current_user} creating dataset '{dataset_in.title}'")
    fields = dataset_in.model_dump()
    fields["domain"] = dataset_in.domain.value
    fields["license"] = dataset_in.license.value
    dataset = purchase_store.create_dataset(db, current_user, fields)

    try:
        credential_type_id = issuer.create_credential_type(dataset.id, dataset.title)
    except LedgerError as e:
        logger.error(f"Dataset {dataset.id} saved but access token creation failed: {e}")
        return _error(
            status.HTTP_502_BAD_GATEWAY,
            "Failed to create access token for dataset",
            details={"dataset_id": dataset.id, "message": str(e)},
        )

    purchase_store.attach_credential_type(db, dataset.id, credential_type_id)
    return DatasetCreateResponse(id=dataset.id, credential_type_id=credential_type_id)


@router.post(
    "/purchase",
    response_model=PurchaseResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse, "description": "Invalid request or payment verification failed"},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse, "description": "Dataset is not set up for sale"},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse, "description": "Seller payout or access token delivery failed"},
    }
)
def purchase_dataset(
    purchase_request: PurchaseRequest,
    current_user: str = Depends(get_current_user),
    service: PurchaseService = Depends(get_purchase_service),
):
    """
    Completes a dataset purchase for a payment the buyer already submitted.

    - **datasetId**: dataset being bought.
    - **buyerWallet**: Hedera account that receives the access token.
    - **paymentTxId**: the buyer's HBAR payment to the platform account.
    """
    logger.info(f"User {current_user} purchasing dataset {purchase_request.dataset_id} with payment {purchase_request.payment_tx_id}")

    try:
        result = service.purchase(
            purchase_request.dataset_id,
            purchase_request.buyer_wallet,
            purchase_request.payment_tx_id,
            current_user,
        )
    except DatasetNotFound as e:
        return _error(status.HTTP_404_NOT_FOUND, "Dataset not found", details={"datasetId": e.dataset_id})
    except DatasetNotPurchasable as e:
        return _error(status.HTTP_409_CONFLICT, "Dataset cannot be purchased", details=str(e))
    except PaymentRejected as e:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Payment verification failed",
            details=e.verdict.error_reason,
            verification=e.verdict.checks(),
        )
    except LedgerOperationFailed as e:
        return _error(
            status.HTTP_502_BAD_GATEWAY,
            "Ledger operation failed",
            details={"step": e.step, "purchaseId": e.purchase_id, "message": str(e)},
            verification=e.verification.checks() if e.verification else None,
        )
    except PersistenceFailed as e:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to record purchase",
            details={"message": str(e), "transactions": e.tx_ids},
            verification=e.verification.checks() if e.verification else None,
        )
    except Exception as e:
        logger.error(f"Unexpected error during purchase of dataset {purchase_request.dataset_id}: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", details=str(e))

    return PurchaseResponse(
        purchase=PurchaseOut.model_validate(result.purchase),
        verification=result.verification.checks(),
    )


@router.get(
    "/{dataset_id}",
    response_model=DatasetDetailResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    }
)
def get_dataset(
    dataset_id: int,
    current_user: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Dataset details plus whether the caller already bought it."""
    dataset = purchase_store.get_dataset(db, dataset_id)
    if not dataset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found")

    has_purchased = purchase_store.find_completed_purchase(db, dataset_id, current_user) is not None
    detail = DatasetOut.model_validate(dataset).model_dump()
    return DatasetDetailResponse(**detail, has_purchased=has_purchased)


@router.get(
    "/{dataset_id}/access",
    response_model=DatasetAccessResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    }
)
def check_access(
    dataset_id: int,
    wallet: Optional[str] = Query(None, description="Hedera account to check for an access token balance."),
    current_user: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    mirror_node: MirrorNodeClient = Depends(get_mirror_node),
):
    """
    Access check: a completed purchase by the caller, or an access token
    held by the given wallet (tokens can be transferred between wallets).
    """
    dataset = purchase_store.get_dataset(db, dataset_id)
    if not dataset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found")

    has_purchased = purchase_store.find_completed_purchase(db, dataset_id, current_user) is not None

    balance = None
    if wallet and dataset.credential_type_id:
        try:
            balance = mirror_node.get_token_balance(wallet, dataset.credential_type_id)
        except (requests.RequestException, ValueError) as e:
            # Balance unknown; fall back to the purchase record
            logger.warning(f"Could not read token balance of {wallet} for dataset {dataset_id}: {e}")

    return DatasetAccessResponse(
        dataset_id=dataset_id,
        wallet=wallet,
        has_purchased=has_purchased,
        on_chain_balance=balance,
        has_access=has_purchased or bool(balance and balance > 0),
    )
