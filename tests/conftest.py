import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from jose import jwt

from hiveminds import config, purchase_store
from hiveminds.database import Base, build_engine, build_session_factory, init_db
from hiveminds.services.payment_verifier import PaymentVerifier

from fakes import (
    CREDENTIAL_TYPE,
    NOW,
    PLATFORM_ACCOUNT,
    SELLER_WALLET,
    FakeLedger,
    FakeMirrorNode,
    make_response,
    payment_payload,
)

TEST_JWT_SECRET = "test-secret-key"


@pytest.fixture()
def session_factory():
    # In-memory SQLite, one shared connection, fresh schema per test
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield build_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def mirror_node():
    return FakeMirrorNode(make_response(200, payment_payload()))


@pytest.fixture()
def ledger():
    return FakeLedger()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def verifier_options(sleeps):
    return {"sleep": sleeps.append, "clock": lambda: NOW}


@pytest.fixture()
def verifier(db, mirror_node, verifier_options):
    return PaymentVerifier(
        mirror_node,
        PLATFORM_ACCOUNT,
        lambda tx_id: purchase_store.is_payment_used(db, tx_id),
        **verifier_options,
    )


@pytest.fixture()
def make_dataset(db):
    def _make(price="200", credential_type_id=CREDENTIAL_TYPE, owner_wallet=SELLER_WALLET, user_id="seller-user"):
        dataset = purchase_store.create_dataset(db, user_id, {
            "title": "Retail footfall 2024",
            "description": "Hourly store visits",
            "domain": "retail",
            "license": "research-only",
            "price": Decimal(price) if price is not None else None,
            "owner_wallet": owner_wallet,
            "train_file_key": "datasets/private/seller-user/train.csv",
            "train_file_sample_key": "datasets/samples/seller-user/train_sample.csv",
        })
        if credential_type_id:
            dataset = purchase_store.attach_credential_type(db, dataset.id, credential_type_id)
        return dataset
    return _make


@pytest.fixture()
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET_KEY", TEST_JWT_SECRET)
    monkeypatch.setattr(config, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(config, "JWT_AUDIENCE", "authenticated")
    return TEST_JWT_SECRET


@pytest.fixture()
def auth_headers(jwt_secret):
    def _headers(user_id="buyer-user", expires_in=timedelta(minutes=30), secret=None):
        token = jwt.encode(
            {"sub": user_id, "aud": "authenticated", "exp": datetime.now(timezone.utc) + expires_in},
            secret or jwt_secret,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers
