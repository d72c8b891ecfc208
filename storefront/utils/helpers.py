"""
Helper utilities
"""

import secrets
import string
from typing import Optional

from storefront.core.config import settings

# Ambiguous glyphs (0/O, 1/I) are left out of generated codes
CODE_ALPHABET = "".join(
    c for c in string.ascii_uppercase + string.digits if c not in "0O1I"
)

def generate_discount_code(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
    """
    Generate a random discount code

    Args:
        prefix: Leading text, uppercased (defaults to DISCOUNT_CODE_PREFIX)
        length: Number of random characters after the prefix

    Returns:
        Uppercase code such as SAVE7KQ2MXRA
    """
    prefix = (settings.DISCOUNT_CODE_PREFIX if prefix is None else prefix).strip().upper()
    length = length or settings.DISCOUNT_CODE_LENGTH

    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{prefix}{suffix}"
