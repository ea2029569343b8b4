"""
Audit recorder.

Builds validated AuditEntry records and appends them to the store's
append-only ledger. There is no update or delete: an entry, once
appended, is final.
"""

import copy
import logging
from datetime import datetime
from typing import Callable, Optional

from worktrack.lib.clock import new_id, utcnow
from worktrack.lib.validate import validate_payload
from worktrack.workflow.models import AuditEntry

logger = logging.getLogger(__name__)


class AuditRecorder:
    def __init__(
        self,
        store,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    def entry(
        self,
        resource_type: str,
        resource_id: str,
        actor_id: str,
        action: str,
        payload: dict,
        at: Optional[datetime] = None,
    ) -> AuditEntry:
        """Build a validated entry without appending it.

        Used by operations that commit the entry together with a record change.

        Raises:
            ValidationError: If the payload does not match the tag's schema.
        """
        validate_payload(action, payload)
        return AuditEntry(
            id=self.id_factory(),
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            payload=copy.deepcopy(payload),
            created_at=at or self.clock(),
        )

    def record(
        self,
        resource_type: str,
        resource_id: str,
        actor_id: str,
        action: str,
        payload: dict,
    ) -> AuditEntry:
        """Append one entry now.

        Raises:
            ValidationError: If the payload does not match the tag's schema.
            StorageError: If the ledger cannot be written. Nothing is appended.
        """
        entry = self.entry(resource_type, resource_id, actor_id, action, payload)
        stored = self.store.append_audit(entry)
        logger.info(f"[AUDIT] {resource_type} {resource_id}: {action} by {actor_id}")
        return stored

    def history(self, resource_id: str) -> list[AuditEntry]:
        """Entries for a resource, oldest first."""
        return sorted(self.store.query_audit(resource_id), key=AuditEntry.sort_key)
