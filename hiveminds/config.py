import os
from decimal import Decimal, InvalidOperation
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hiveminds.db")

# --- Hedera ---
HEDERA_NETWORK = os.getenv("HEDERA_NETWORK", "testnet") # "testnet" or "mainnet"
HEDERA_ACCOUNT_ID = os.getenv("HEDERA_ACCOUNT_ID") # Custodial account (collects payments, mints credentials)
HEDERA_PRIVATE_KEY = os.getenv("HEDERA_PRIVATE_KEY")

# Explicit override, otherwise derived from HEDERA_NETWORK
MIRROR_NODE_URL = os.getenv("MIRROR_NODE_URL")

# Frontend origins allowed by CORS (comma separated)
FRONTEND_ORIGINS = [o.strip() for o in os.getenv("FRONTEND_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# JWT Settings (tokens are issued by the identity provider)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        print(f"Warning: Invalid {name} in .env file. Defaulting to {default}.")
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        print(f"Warning: Invalid {name} in .env file. Defaulting to {default}.")
        return default


# --- Timeouts (seconds) ---
MIRROR_NODE_TIMEOUT_SECONDS = _float_env("MIRROR_NODE_TIMEOUT_SECONDS", 10.0)
LEDGER_TIMEOUT_SECONDS = _float_env("LEDGER_TIMEOUT_SECONDS", 60.0)

# --- Payment verification ---
# Mirror node indexing lags consensus, so lookups are polled with backoff
VERIFY_MAX_ATTEMPTS = _int_env("VERIFY_MAX_ATTEMPTS", 5)
VERIFY_INITIAL_DELAY_SECONDS = _float_env("VERIFY_INITIAL_DELAY_SECONDS", 1.0)
VERIFY_BACKOFF_FACTOR = _float_env("VERIFY_BACKOFF_FACTOR", 2.0)
VERIFY_MAX_DELAY_SECONDS = _float_env("VERIFY_MAX_DELAY_SECONDS", 8.0)
PAYMENT_MAX_AGE_SECONDS = _int_env("PAYMENT_MAX_AGE_SECONDS", 24 * 60 * 60)
AMOUNT_TOLERANCE_TINYBARS = _int_env("AMOUNT_TOLERANCE_TINYBARS", 1)
REQUIRE_PAYER_MATCH = os.getenv("REQUIRE_PAYER_MATCH", "false").lower() in ("1", "true", "yes")

# --- Purchase orchestration ---
try:
    SELLER_SHARE = Decimal(os.getenv("SELLER_SHARE", "0.95"))
except InvalidOperation:
    print("Warning: Invalid SELLER_SHARE in .env file. Defaulting to 0.95.")
    SELLER_SHARE = Decimal("0.95")

# A pending purchase not touched for this long may be taken over and resumed
STALE_CLAIM_SECONDS = _int_env("STALE_CLAIM_SECONDS", 10 * 60)

# A sent transaction that the mirror node still has not seen this long after
# its valid start can no longer reach consensus (valid duration is 120s)
LEDGER_TX_EXPIRY_SECONDS = _int_env("LEDGER_TX_EXPIRY_SECONDS", 180)

# Basic validation
if not HEDERA_ACCOUNT_ID:
    print("Warning: HEDERA_ACCOUNT_ID not found in .env file. Payments cannot be verified.")
if not HEDERA_PRIVATE_KEY:
    print("Warning: HEDERA_PRIVATE_KEY not found in .env file. Ledger operations will fail.")
if not JWT_SECRET_KEY:
    print("Warning: JWT_SECRET_KEY not found in .env file. Authentication will fail.")
if HEDERA_NETWORK not in ("testnet", "mainnet"):
    print(f"Warning: Unknown HEDERA_NETWORK '{HEDERA_NETWORK}'. Expected 'testnet' or 'mainnet'.")
