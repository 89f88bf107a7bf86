"""
Configuration for BlindBallot.

Every value has a default suitable for a local demo and can be overridden
through an environment variable of the same name prefixed with BLINDBALLOT_
(PORT, DEBUG and LOG_LEVEL are read unprefixed).
"""

import logging
import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


DATA_DIR = Path(os.environ.get("BLINDBALLOT_DATA_DIR", Path.cwd() / "data"))

# SQLite file holding the authority key pair and the signing log
DB_PATH = Path(os.environ.get("BLINDBALLOT_DB_PATH", DATA_DIR / "authority.db"))

# One JSON document per election lives here
LEDGER_DIR = Path(os.environ.get("BLINDBALLOT_LEDGER_DIR", DATA_DIR / "elections"))

# The voter's ephemeral key must be smaller than the authority modulus,
# otherwise the encoded ciphertext cannot be signed.
AUTHORITY_KEY_SIZE = _env_int("BLINDBALLOT_AUTHORITY_KEY_SIZE", 3072)
EPHEMERAL_KEY_SIZE = _env_int("BLINDBALLOT_EPHEMERAL_KEY_SIZE", 2048)

REGISTRY_OWNER = os.environ.get("BLINDBALLOT_REGISTRY_OWNER", "registry-admin")

# HTTP server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _env_int("PORT", 5000)
DEBUG = os.environ.get("DEBUG", "false").lower() == "true"

# Logging
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = None):
    """Install the root handler once; safe to call repeatedly."""
    logging.basicConfig(format=LOG_FORMAT, level=level or LOG_LEVEL)
