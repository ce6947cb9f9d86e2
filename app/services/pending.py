"""
Pending verification slot.

Holds the context (email + flow kind) that the entry flow hands to the
verification screen.  One slot per scope, last write wins – it is not a
queue.  The scope is the explicit handoff id the entry flow gives the
client; the default scope is a single process-wide slot.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from app.errors import StorageError
from app.models import PendingVerification
from app.services.interfaces import KeyValueStore

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_verification"


class PendingVerificationStore:
    def __init__(self, storage: KeyValueStore, scope: str | None = None) -> None:
        self._storage = storage
        self._scope = scope
        self._key = f"{PENDING_KEY}:{scope}" if scope else PENDING_KEY

    @property
    def scope(self) -> str | None:
        return self._scope

    async def put(self, record: PendingVerification) -> None:
        """Overwrite the slot. Raises StorageError if it cannot be written."""
        # Re-validate: model_construct() or mutation could bypass the email check
        record = PendingVerification.model_validate(record.model_dump())
        await self._storage.set(self._key, record.model_dump_json())
        logger.info(
            "Stored pending %s verification for %s (scope=%s)",
            record.flow_kind.value, record.email, self._scope or "default",
        )

    async def get(self) -> PendingVerification | None:
        """
        Return the slot's record, or None when empty or corrupt.

        StorageError propagates: the caller treats an unreadable slot the
        same as an empty one and restarts the flow.
        """
        raw = await self._storage.get(self._key)
        if raw is None:
            return None
        try:
            return PendingVerification.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt pending verification under %s", self._key)
            return None

    async def clear(self) -> None:
        try:
            await self._storage.delete(self._key)
        except StorageError:
            logger.exception("Failed to clear pending verification under %s", self._key)
