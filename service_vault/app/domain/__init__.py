"""
Request orchestration for the Vault service.
"""

from .dispatcher import (
    DispatchResult,
    RequestDispatcher,
    RequestState,
    VaultOperation,
    HEADER_LIMIT,
    HEADER_REMAINING,
    HEADER_RETRY_AFTER,
)

__all__ = [
    "DispatchResult",
    "RequestDispatcher",
    "RequestState",
    "VaultOperation",
    "HEADER_LIMIT",
    "HEADER_REMAINING",
    "HEADER_RETRY_AFTER",
]
