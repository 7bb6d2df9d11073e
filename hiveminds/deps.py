import logging
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from . import purchase_store
from .services.credential_issuer import CredentialIssuer
from .services.mirror_node_service import MirrorNodeClient
from .services.payment_verifier import PaymentVerifier
from .services.purchase_service import PurchaseService

logger = logging.getLogger(__name__)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_mirror_node(request: Request) -> MirrorNodeClient:
    return request.app.state.mirror_node


def get_ledger(request: Request):
    ledger = request.app.state.ledger
    if ledger is None:
        logger.error("Ledger operation requested but the Hedera client is not configured.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ledger client not configured")
    return ledger


def get_credential_issuer(ledger=Depends(get_ledger)) -> CredentialIssuer:
    return CredentialIssuer(ledger)


def get_payment_verifier(
    request: Request,
    db: Session = Depends(get_db),
    mirror_node: MirrorNodeClient = Depends(get_mirror_node),
) -> PaymentVerifier:
    return PaymentVerifier(
        mirror_node,
        request.app.state.platform_account_id,
        lambda payment_tx_id: purchase_store.is_payment_used(db, payment_tx_id),
        **request.app.state.verifier_options,
    )


def get_purchase_service(
    request: Request,
    db: Session = Depends(get_db),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    ledger=Depends(get_ledger),
) -> PurchaseService:
    return PurchaseService(
        db,
        verifier,
        CredentialIssuer(ledger),
        ledger,
        network=request.app.state.network,
        mirror_node=request.app.state.mirror_node,
    )
