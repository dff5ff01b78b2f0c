"""Identifiers for practitioners, bookings and calendar sync tasks."""

import ulid

# Crockford base32, 26 characters
ULID_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def generate_ulid() -> str:
    """New time-ordered id as its canonical 26-character string."""
    return str(ulid.ULID())
