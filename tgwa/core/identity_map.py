"""
Identity map correlating source posts with the destination messages they produced.
Used to route edits on the channel to the message already sent on WhatsApp.
"""
from abc import ABC, abstractmethod
from typing import Dict, Hashable, Optional

from .models import IdentityRecord


class IdentityMap(ABC):
    """Store interface so a bounded or shared implementation can be dropped in."""

    @abstractmethod
    async def get(self, key: Hashable) -> Optional[IdentityRecord]:
        """Return the record for a source post, or None if it was never sent."""

    @abstractmethod
    async def put(self, key: Hashable, record: IdentityRecord) -> None:
        """Record (or overwrite) the destination message for a source post."""


class InMemoryIdentityMap(IdentityMap):
    """Process-local identity map. Entries are never evicted and do not survive restarts."""

    def __init__(self):
        self._records: Dict[Hashable, IdentityRecord] = {}

    async def get(self, key: Hashable) -> Optional[IdentityRecord]:
        return self._records.get(key)

    async def put(self, key: Hashable, record: IdentityRecord) -> None:
        self._records[key] = record

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._records
