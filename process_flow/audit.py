"""
Audit Trail Module

Hash-chained append-only log of every template, instance and step change.
Each event stores the SHA-256 hash of its predecessor, so edits or deletions
of stored events are detectable with ``verify_integrity()``.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_UPDATED = "template_updated"
    TEMPLATE_DELETED = "template_deleted"
    TEMPLATE_ACCESS_GRANTED = "template_access_granted"
    TEMPLATE_ACCESS_REVOKED = "template_access_revoked"

    INSTANCE_STARTED = "instance_started"
    INSTANCE_COMPLETED = "instance_completed"
    INSTANCE_CANCELLED = "instance_cancelled"
    INSTANCE_DELETED = "instance_deleted"

    STEP_STARTED = "step_started"
    STEP_EXECUTED = "step_executed"
    STEP_SKIPPED = "step_skipped"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event linked to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    sequence: int
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class AuditTrail:
    """Hash-chained audit trail for tamper detection"""

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _last_event(self) -> Optional[Dict[str, Any]]:
        events = self.storage.load_all(self.table_name)
        if not events:
            return None
        return max(events, key=lambda e: e.get('sequence', 0))

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain.

        Runs inside the caller's atomic block when there is one, so events
        of a rolled back operation disappear with it.
        """
        if not self.enabled:
            return None

        with self.storage.atomic():
            last = self._last_event()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=(last['sequence'] + 1) if last else 1,
                previous_hash=last['current_hash'] if last else "",
                current_hash="",
                metadata=_jsonable(metadata or {}),
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events of one entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        return sorted(events, key=lambda e: e.sequence)

    def get_all_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        return sorted(events, key=lambda e: e.sequence)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the whole chain.

        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``.
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash

        return result
