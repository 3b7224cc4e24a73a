"""
Caller identity extraction for the vault service.

Credentials are not verified; any non-blank value names a caller.
"""

from .identity import extract_caller_identity, DEFAULT_SCHEMES

__all__ = ["extract_caller_identity", "DEFAULT_SCHEMES"]
