"""Append-only audit recording."""
from typing import Callable, List

from payflow.api.schemas import AuditLogRecord, User
from payflow.clock import new_id, utcnow
from payflow.models.audit import EntityType
from payflow.models.enums import Role
from payflow.services.repository import Repository


class AuditRecorder:
    """
    Builds and appends audit entries. There is no update or delete.

    ``entry`` only builds; lifecycle transitions hand the built entry to the
    repository together with the record change so both land atomically.
    """

    def __init__(self, repository: Repository, clock: Callable = utcnow):
        self.repository = repository
        self.clock = clock

    def entry(
        self,
        action: str,
        entity_id: str,
        actor_name: str,
        actor_role: Role,
        entity_type: str = EntityType.PAYMENT_REQUEST
    ) -> AuditLogRecord:
        return AuditLogRecord(
            id=new_id("LOG"),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_name=actor_name,
            actor_role=actor_role,
            timestamp=self.clock(),
        )

    def entry_for(self, action: str, entity_id: str, actor: User, entity_type: str = EntityType.PAYMENT_REQUEST):
        return self.entry(action, entity_id, actor.name, actor.role, entity_type)

    def append(self, action: str, request_id: str, actor_name: str, actor_role: Role) -> AuditLogRecord:
        """Append a standalone entry for ``request_id``."""
        return self.repository.add_audit_log(self.entry(action, request_id, actor_name, actor_role))

    def history(self) -> List[AuditLogRecord]:
        """All entries, newest first."""
        return self.repository.list_audit_logs()

    def for_entity(self, entity_id: str) -> List[AuditLogRecord]:
        return self.repository.list_audit_logs(entity_id=entity_id)

