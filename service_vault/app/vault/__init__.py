"""
Vault storage for the Vault service.
"""

from .store import VaultItem, VaultStore
from .models import PayloadEncoding, VaultItemList, VaultItemView, VaultItemWrite

__all__ = [
    "PayloadEncoding",
    "VaultItem",
    "VaultItemList",
    "VaultItemView",
    "VaultItemWrite",
    "VaultStore",
]
