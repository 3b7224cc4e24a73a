"""
Derive the caller identity from the Authorization header.
"""

from typing import Iterable, Optional

from shared.logging import get_logger

DEFAULT_SCHEMES = ("Bearer",)

logger = get_logger("vault.identity")


def extract_caller_identity(header_value: Optional[str],
                            schemes: Iterable[str] = DEFAULT_SCHEMES) -> Optional[str]:
    """
    Return the caller identity carried by a credential header.

    A recognized scheme prefix ("Bearer <token>", case-insensitive) is
    stripped and the rest trimmed. The token is returned verbatim: no
    decoding, signature or expiry checks. Returns None when the header is
    absent or nothing is left after stripping, which callers treat as
    Unauthorized.
    """
    if header_value is None:
        return None

    candidate = header_value.strip()
    parts = candidate.split(None, 1)
    if parts:
        recognized = {scheme.lower() for scheme in schemes}
        if parts[0].lower() in recognized:
            candidate = parts[1].strip() if len(parts) > 1 else ""

    if not candidate:
        logger.debug("Blank caller credential")
        return None

    return candidate
