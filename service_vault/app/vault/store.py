"""
Ownership-scoped, in-memory store of vault items.
"""

import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger, fingerprint


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VaultItem:
    """Immutable snapshot of a stored secret."""

    id: str
    owner: str
    payload: bytes
    created_at: datetime
    updated_at: datetime
    encoding: str = "utf-8"


class _ItemSlot:
    """Holds the current snapshot of one item; updates serialize on ``lock``."""

    __slots__ = ("item", "lock")

    def __init__(self, item: VaultItem):
        self.item = item
        self.lock = threading.Lock()


class _Shard:
    def __init__(self):
        self.lock = threading.Lock()
        self.slots: Dict[str, _ItemSlot] = {}
        self.owner_index: Dict[str, List[str]] = {}


class VaultStore:
    """
    Concurrent key-value store of vault items scoped by owner.

    Items are spread across hash shards by id and the owner index across
    shards by owner, each shard behind its own lock. Updates to one item
    are serialized on that item's lock; distinct items never wait on each
    other. Items are never deleted.
    """

    def __init__(self, shards: int = 16, clock: Callable[[], datetime] = utc_now,
                 id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        if shards < 1:
            raise ValueError("shards must be at least 1")
        self._shards = [_Shard() for _ in range(shards)]
        self.clock = clock
        self.id_factory = id_factory
        self.logger = get_logger("vault.store")

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def create(self, owner: str, payload: bytes, encoding: str = "utf-8") -> VaultItem:
        """Store a new item owned by ``owner`` and return it."""
        now = self.clock()

        while True:
            item_id = self.id_factory()
            item = VaultItem(
                id=item_id,
                owner=owner,
                payload=bytes(payload),
                created_at=now,
                updated_at=now,
                encoding=encoding,
            )
            item_shard = self._shard_for(item_id)
            with item_shard.lock:
                if item_id in item_shard.slots:
                    continue
                item_shard.slots[item_id] = _ItemSlot(item)
            break

        owner_shard = self._shard_for(owner)
        with owner_shard.lock:
            owner_shard.owner_index.setdefault(owner, []).append(item_id)

        self.logger.info("Vault item created", item_id=item_id, owner=fingerprint(owner), size=len(item.payload))
        return item

    def list(self, owner: str) -> List[VaultItem]:
        """All items owned by ``owner`` in creation order. Empty if none."""
        owner_shard = self._shard_for(owner)
        with owner_shard.lock:
            item_ids = list(owner_shard.owner_index.get(owner, ()))

        items = []
        for item_id in item_ids:
            slot = self._lookup(item_id)
            if slot is not None:
                items.append(slot.item)
        return items

    def get(self, owner: str, item_id: str) -> VaultItem:
        """Fetch one item; unknown and unowned ids both raise NotFoundError."""
        return self._owned_slot(owner, item_id).item

    def update(self, owner: str, item_id: str, payload: bytes, encoding: str = "utf-8") -> VaultItem:
        """
        Replace the payload of an owned item.

        Unknown ids and ids owned by someone else raise the same
        NotFoundError so callers cannot probe for other callers' items.
        ``id``, ``owner`` and ``created_at`` are preserved; ``updated_at``
        strictly increases on every update.
        """
        slot = self._owned_slot(owner, item_id)

        with slot.lock:
            current = slot.item
            now = self.clock()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)
            updated = replace(current, payload=bytes(payload), encoding=encoding, updated_at=now)
            slot.item = updated

        self.logger.info("Vault item updated", item_id=item_id, owner=fingerprint(owner), size=len(updated.payload))
        return updated

    def count(self) -> int:
        """Total number of stored items."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.slots)
        return total

    def _lookup(self, item_id: str) -> Optional[_ItemSlot]:
        shard = self._shard_for(item_id)
        with shard.lock:
            return shard.slots.get(item_id)

    def _owned_slot(self, owner: str, item_id: str) -> _ItemSlot:
        slot = self._lookup(item_id)
        # owner is immutable, so checking outside the item lock is safe
        if slot is None or slot.item.owner != owner:
            self.logger.info("Vault item not found", item_id=item_id, owner=fingerprint(owner))
            raise NotFoundError("Vault item not found", details={"id": item_id})
        return slot
