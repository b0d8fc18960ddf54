"""
Hashing and entry ID generation utilities.

New entries get random identifiers; legacy records that were persisted
without one get a deterministic identifier so that re-running the migration
never produces two ids for the same record.
"""

import hashlib
import uuid
from datetime import datetime


def new_entry_id() -> str:
    """Generate an opaque identifier for a newly created entry."""
    return uuid.uuid4().hex


def round_timestamp(timestamp: datetime, rounding_seconds: int) -> datetime:
    """
    Round timestamp down to the nearest N seconds.

    Args:
        timestamp: Timestamp to round.
        rounding_seconds: Rounding interval in seconds.

    Returns:
        Rounded timestamp.
    """
    total_seconds = int(timestamp.timestamp())
    rounded_seconds = (total_seconds // rounding_seconds) * rounding_seconds
    return datetime.fromtimestamp(rounded_seconds, tz=timestamp.tzinfo)


def generate_legacy_id(
    tracker: str,
    timestamp: datetime,
    value: float,
    algorithm: str = "sha256",
    rounding_seconds: int = 1,
) -> str:
    """
    Generate a deterministic entry ID for a legacy record.

    Args:
        tracker: Tracker name the record belongs to.
        timestamp: Event timestamp.
        value: Canonical value of the record.
        algorithm: Hash algorithm to use.
        rounding_seconds: Timestamp rounding interval.

    Returns:
        Hex digest truncated to the length of a uuid hex string.
    """
    rounded_ts = round_timestamp(timestamp, rounding_seconds)
    hash_string = "|".join([tracker, rounded_ts.isoformat(), f"{value:.3f}"])

    hash_func = hashlib.new(algorithm)
    hash_func.update(hash_string.encode("utf-8"))

    return hash_func.hexdigest()[:32]
