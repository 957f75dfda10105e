"""Content-integrity checks for configuration snapshots."""

import hashlib
import hmac

from tendril.errors import IntegrityError


def compute_config_hash(config: bytes) -> str:
    """Return the lowercase hex SHA-256 of a configuration blob."""
    return hashlib.sha256(config).hexdigest()


def verify_integrity(config: bytes, declared_hash: str) -> None:
    """
    Compare a blob against its declared hash.

    An empty declared hash skips the check.

    Raises:
        IntegrityError: If the hashes differ
    """
    if not declared_hash:
        return

    calculated = compute_config_hash(config)
    if not hmac.compare_digest(calculated, declared_hash.strip().lower()):
        raise IntegrityError(declared_hash, calculated)
