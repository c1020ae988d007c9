"""
ID and timestamp helpers.

Generates event slugs, organization ids, anti-forgery tokens and the
epoch-based timestamps stored on records.
"""

import math
import secrets
import string
import time
import uuid
from typing import Optional

# Alphabet for anti-forgery tokens
_TOKEN_ALPHABET = string.ascii_letters + string.digits


def random_slug(length: int = 8) -> str:
    """
    Return a random lowercase hex slug.

    Examples:
        >>> len(random_slug())
        8
        >>> len(random_slug(4))
        4
    """
    return uuid.uuid4().hex[:length]


def derive_slug(candidate: Optional[str]) -> str:
    """
    Derive the next slug to try after a collision.

    A caller-chosen slug keeps its prefix and gains a 4-character suffix;
    a generated slug is simply regenerated.

    Examples:
        >>> derive_slug("wedding").startswith("wedding-")
        True
        >>> len(derive_slug(None))
        8
    """
    if candidate:
        return f"{candidate}-{random_slug(4)}"
    return random_slug()


def new_organization_id() -> str:
    """Generate a new organization id."""
    return str(uuid.uuid4())


def new_xsrf_token(length: int = 20) -> str:
    """Generate an alphanumeric anti-forgery token."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


def ttl_after_days(days: int) -> int:
    """Epoch seconds `days` from now, as stored in TTL attributes."""
    return math.floor(time.time() + 86400 * days)
