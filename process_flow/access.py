"""
Template Access Control Module

Per-template list of users allowed to view and start a process. Admins
bypass the list. Being responsible for a step does not require an entry
here: step execution is authorized by assignment, not by this list.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Set

from .audit import AuditEventType, AuditTrail
from .directory import CallerContext, DirectoryProvider
from .errors import NotFoundError
from .logging_config import get_logger
from .storage import StorageInterface, StorageRecord


logger = get_logger("access")

TEMPLATES_TABLE = "process_templates"
ACCESS_TABLE = "template_access"


@dataclass
class TemplateAccess(StorageRecord):
    """One user's authorization on one template"""
    template_id: str
    user_id: str
    granted_by: Optional[str] = None


def access_key(template_id: str, user_id: str) -> str:
    return f"{template_id}:{user_id}"


class TemplateAccessControl:
    """Grants, revokes and checks template-level authorization"""

    def __init__(self, storage: StorageInterface, directory: DirectoryProvider,
                 audit: Optional[AuditTrail] = None):
        self.storage = storage
        self.directory = directory
        self.audit = audit

    def grant_access(self, template_id: str, user_id: str,
                     granted_by: Optional[str] = None) -> TemplateAccess:
        """Authorize a user on a template (idempotent)"""
        if not self.storage.exists(TEMPLATES_TABLE, template_id):
            raise NotFoundError("Modelo de processo não encontrado")
        if not self.directory.user_exists(user_id):
            raise NotFoundError("Usuário não encontrado")

        key = access_key(template_id, user_id)
        with self.storage.atomic():
            existing = self.storage.load(ACCESS_TABLE, key)
            if existing:
                return TemplateAccess.from_dict(existing)

            now = datetime.now(timezone.utc)
            entry = TemplateAccess(
                id=key,
                created_at=now,
                updated_at=now,
                template_id=template_id,
                user_id=user_id,
                granted_by=granted_by
            )
            self.storage.save(ACCESS_TABLE, key, entry.to_dict())

            if self.audit:
                self.audit.log_event(
                    AuditEventType.TEMPLATE_ACCESS_GRANTED,
                    'process_template',
                    template_id,
                    {'user_id': user_id},
                    granted_by
                )

        logger.info("Access granted on template %s to user %s", template_id, user_id)
        return entry

    def revoke_access(self, template_id: str, user_id: str,
                      revoked_by: Optional[str] = None) -> bool:
        """Remove a user's authorization; returns False if there was none"""
        with self.storage.atomic():
            removed = self.storage.delete(ACCESS_TABLE, access_key(template_id, user_id))
            if removed and self.audit:
                self.audit.log_event(
                    AuditEventType.TEMPLATE_ACCESS_REVOKED,
                    'process_template',
                    template_id,
                    {'user_id': user_id},
                    revoked_by
                )
        if removed:
            logger.info("Access revoked on template %s for user %s", template_id, user_id)
        return removed

    def list_authorized_users(self, template_id: str) -> List[str]:
        """User ids on the template's list, in grant order"""
        entries = self.storage.find(ACCESS_TABLE, {'template_id': template_id})
        entries.sort(key=lambda e: e['created_at'])
        return [entry['user_id'] for entry in entries]

    def has_access(self, template_id: str, caller: CallerContext) -> bool:
        if caller.is_admin:
            return True
        return self.storage.exists(ACCESS_TABLE, access_key(template_id, caller.user_id))

    def accessible_template_ids(self, user_id: str) -> Set[str]:
        return {entry['template_id'] for entry in self.storage.find(ACCESS_TABLE, {'user_id': user_id})}

    def clear(self, template_id: str) -> int:
        """Drop every entry of a template; used when the template is deleted"""
        removed = 0
        with self.storage.atomic():
            for entry in self.storage.find(ACCESS_TABLE, {'template_id': template_id}):
                if self.storage.delete(ACCESS_TABLE, entry['id']):
                    removed += 1
        return removed
