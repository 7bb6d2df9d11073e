from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from . import config

# Configure basic logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from .database import build_engine, build_session_factory, init_db
from .routers import datasets, purchases
from .services.hedera_service import HederaLedgerClient
from .services.mirror_node_service import MirrorNodeClient, mirror_node_url_for

logger = logging.getLogger(__name__)


def build_ledger_client():
    """The custodial Hedera client, or None when credentials are missing (ledger endpoints then answer 503)."""
    if not config.HEDERA_ACCOUNT_ID or not config.HEDERA_PRIVATE_KEY:
        logger.error("CRITICAL: HEDERA_ACCOUNT_ID / HEDERA_PRIVATE_KEY not configured. Ledger operations will fail.")
        return None
    try:
        return HederaLedgerClient(
            network=config.HEDERA_NETWORK,
            account_id=config.HEDERA_ACCOUNT_ID,
            private_key=config.HEDERA_PRIVATE_KEY,
            timeout=config.LEDGER_TIMEOUT_SECONDS,
        )
    except Exception as e:
        logger.error(f"CRITICAL: Failed to initialize Hedera client: {e}", exc_info=True)
        return None


def create_app(
    session_factory=None,
    mirror_node=None,
    ledger=None,
    platform_account_id=None,
    network=None,
    verifier_options=None,
) -> FastAPI:
    """
    Composition root. Collaborators passed in are used as-is; anything left
    out is built from config when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_ledger = None
        if app.state.session_factory is None:
            engine = build_engine(config.DATABASE_URL)
            init_db(engine)
            app.state.session_factory = build_session_factory(engine)
        if app.state.mirror_node is None:
            base_url = mirror_node_url_for(app.state.network, config.MIRROR_NODE_URL)
            app.state.mirror_node = MirrorNodeClient(base_url, timeout=config.MIRROR_NODE_TIMEOUT_SECONDS)
            logger.info(f"Using mirror node at {base_url}")
        if app.state.ledger is None:
            owned_ledger = app.state.ledger = build_ledger_client()
        yield
        if owned_ledger is not None:
            owned_ledger.close()

    app = FastAPI(
        title="HiveMinds Marketplace Backend",
        description="Dataset marketplace API: Hedera payment verification, seller payouts and access tokens.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.session_factory = session_factory
    app.state.mirror_node = mirror_node
    app.state.ledger = ledger
    app.state.platform_account_id = platform_account_id or config.HEDERA_ACCOUNT_ID
    app.state.network = network or config.HEDERA_NETWORK
    app.state.verifier_options = verifier_options or {}

    # --- CORS Configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.FRONTEND_ORIGINS,
        allow_credentials=True, # Allow cookies/authorization headers
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error format: {"error": ..., "details": ...} ---
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected invalid request to {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    # Include routers
    app.include_router(datasets.router)
    app.include_router(purchases.router)

    @app.get("/", tags=["Health Check"])
    def read_root():
        """Root endpoint for health check."""
        return {"status": "ok", "message": "HiveMinds marketplace backend", "network": app.state.network}

    return app


app = create_app()


# --- Server Startup (for local development) ---
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("hiveminds.main:app", host="0.0.0.0", port=8000, reload=True) # Use reload for development
