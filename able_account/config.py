"""
Able Account Configuration Manager
Centralizes path definitions, KDF defaults and environment variable loading.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# 1. Locate the Project Root
# Assumes structure: project/able_account/config.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# 2. Load .env file
load_dotenv(PROJECT_ROOT / ".env")

# 3. Define Default Paths
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_STORE_PATH = DEFAULT_DATA_DIR / "able_account_store.json"

# 4. Export Configuration
# Priority: Environment Variable -> .env file -> Defaults
STORE_PATH = os.getenv("ABLE_ACCOUNT_STORE_PATH", str(DEFAULT_STORE_PATH))
KDF_ALGORITHM = os.getenv("ABLE_ACCOUNT_KDF", "pbkdf2-sha256")
PBKDF2_ITERATIONS = int(os.getenv("ABLE_ACCOUNT_PBKDF2_ITERATIONS", "600000"))
MIN_PASSPHRASE_LENGTH = int(os.getenv("ABLE_ACCOUNT_MIN_PASSPHRASE", "8"))

# Argon2id parameters (only used when ABLE_ACCOUNT_KDF=argon2id)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 64 * 1024  # KB
ARGON2_PARALLELISM = 1

# Unlock backoff: after LOCKOUT_THRESHOLD failures wait min(n-2, LOCKOUT_MAX_DELAY) seconds
LOCKOUT_THRESHOLD = 3
LOCKOUT_MAX_DELAY = 10

APP_IDENTIFIER = "able-account"
BACKUP_VERSION = 1

# Ensure data directory exists if we are using the default path
if str(DEFAULT_DATA_DIR) in STORE_PATH:
    os.makedirs(os.path.dirname(STORE_PATH), exist_ok=True)


def default_kdf_params() -> dict:
    """KDF parameters recorded in every new encrypted envelope."""
    if KDF_ALGORITHM == "argon2id":
        return {
            "algorithm": "argon2id",
            "time_cost": ARGON2_TIME_COST,
            "memory_cost": ARGON2_MEMORY_COST,
            "parallelism": ARGON2_PARALLELISM,
        }
    return {"algorithm": "pbkdf2-sha256", "iterations": PBKDF2_ITERATIONS}
