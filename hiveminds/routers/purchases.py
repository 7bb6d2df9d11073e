from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
import logging

from .. import purchase_store
from ..deps import get_db
from ..models.data_models import ErrorResponse, PurchaseOut
from ..routers.auth import get_current_user

router = APIRouter(
    prefix="/purchases",
    tags=["Purchases"],
)

logger = logging.getLogger(__name__)


@router.get("", response_model=List[PurchaseOut], responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}})
def list_my_purchases(
    current_user: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All purchases made by the caller, newest first, including failed ones awaiting a retry."""
    return [PurchaseOut.model_validate(p) for p in purchase_store.list_purchases_for_user(db, current_user)]


@router.get(
    "/{purchase_id}",
    response_model=PurchaseOut,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    }
)
def get_purchase(
    purchase_id: str,
    current_user: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    purchase = purchase_store.get_purchase(db, purchase_id)
    # Other users' purchases are reported as missing
    if not purchase or purchase.user_id != current_user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Purchase {purchase_id} not found")
    return PurchaseOut.model_validate(purchase)
