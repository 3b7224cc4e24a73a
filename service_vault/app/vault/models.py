"""
Wire models for the Vault service.
"""

import base64
import binascii
from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from .store import VaultItem


class PayloadEncoding(str, Enum):
    """How a payload string maps to stored bytes."""
    UTF8 = "utf-8"
    BASE64 = "base64"


class VaultItemWrite(BaseModel):
    """Body of create and update requests."""

    model_config = ConfigDict(extra="forbid")

    payload: StrictStr
    encoding: PayloadEncoding = PayloadEncoding.UTF8

    def payload_bytes(self) -> bytes:
        """Decode the payload into the bytes the store keeps."""
        if self.encoding is PayloadEncoding.BASE64:
            try:
                return base64.b64decode(self.payload, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"payload is not valid base64: {exc}") from exc
        return self.payload.encode("utf-8")


class VaultItemView(BaseModel):
    """Item as returned to its owner. The owner itself is not echoed."""

    id: str
    payload: str
    encoding: PayloadEncoding
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item: VaultItem) -> "VaultItemView":
        encoding = PayloadEncoding(item.encoding)
        if encoding is PayloadEncoding.BASE64:
            payload = base64.b64encode(item.payload).decode("ascii")
        else:
            payload = item.payload.decode("utf-8")
        return cls(
            id=item.id,
            payload=payload,
            encoding=encoding,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class VaultItemList(BaseModel):
    """Response body of the listing endpoint."""

    items: List[VaultItemView] = Field(default_factory=list)
    count: int = 0
