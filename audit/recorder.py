"""
audit/recorder.py -- Best-effort compliance log.

Services call the recorder AFTER their business transaction has committed.
Each record opens its own short transaction; any failure in it (database
locked, disk full, serialization error) is logged with a traceback and
swallowed. An audit outage must never turn a committed operation into an
error for the caller.

Every successful entry is also echoed to the "teamgate.audit" logger so the
trail is visible in application logs even before anyone queries the table.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from audit.models import AuditAction, AuditEntry
from store.db import Database
from store.repositories import AuditRepository

logger = logging.getLogger("teamgate.audit")


class AuditRecorder:
    def __init__(self, db: Database) -> None:
        self.db = db

    def record(
        self,
        action: AuditAction,
        actor_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Any = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        """Append one entry. Returns its id, or None if recording failed.

        action may be an AuditAction or its string tag; an unknown tag is a
        failed write like any other.
        """
        entity_id = str(entity_id) if entity_id is not None else None
        try:
            entry = AuditEntry(
                action=AuditAction(action),
                actor_id=actor_id,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=dict(metadata or {}),
            )
            with self.db.transaction() as conn:
                entry_id = AuditRepository(conn).append(entry)
        except Exception:
            logger.exception(
                "Audit write failed: action=%s entity=%s/%s actor=%s",
                action,
                entity_type,
                entity_id,
                actor_id,
            )
            return None
        logger.info(
            "audit action=%s entity=%s/%s actor=%s",
            entry.action.value,
            entity_type,
            entity_id,
            actor_id,
        )
        return entry_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def record_role_change(self, actor_id: Optional[int], account_id: int, old_role: str, new_role: str) -> Optional[int]:
        return self.record(
            AuditAction.ACCOUNT_ROLE_CHANGED,
            actor_id=actor_id,
            entity_type="account",
            entity_id=account_id,
            metadata={"old_role": old_role, "new_role": new_role},
        )

    def record_member_role_change(
        self,
        actor_id: Optional[int],
        team_id: int,
        account_id: int,
        old_role: str,
        new_role: str,
    ) -> Optional[int]:
        return self.record(
            AuditAction.TEAM_MEMBER_ROLE_CHANGED,
            actor_id=actor_id,
            entity_type="team",
            entity_id=team_id,
            metadata={"account_id": account_id, "old_role": old_role, "new_role": new_role},
        )

    def record_assignment_change(
        self,
        actor_id: Optional[int],
        entity_type: str,
        entity_id: Any,
        old_assignee_id: Optional[int],
        new_assignee_id: Optional[int],
    ) -> Optional[int]:
        """Record a (re)assignment of a team-scoped resource.

        Clearing the assignee records RESOURCE_UNASSIGNED; anything else is
        RESOURCE_ASSIGNED.
        """
        action = AuditAction.RESOURCE_UNASSIGNED if new_assignee_id is None else AuditAction.RESOURCE_ASSIGNED
        return self.record(
            action,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata={"old_assignee_id": old_assignee_id, "new_assignee_id": new_assignee_id},
        )

    def record_deletion(
        self,
        actor_id: Optional[int],
        entity_type: str,
        entity_id: Any,
        entity_name: Optional[str] = None,
    ) -> Optional[int]:
        action = {
            "team": AuditAction.TEAM_DELETED,
            "account": AuditAction.ACCOUNT_DELETED,
        }.get(entity_type, AuditAction.RESOURCE_DELETED)
        return self.record(
            action,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata={"name": entity_name} if entity_name is not None else {},
        )
