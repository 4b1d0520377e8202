"""
Audit Trail

Append-only record of every ledger state change. Each event stores the
SHA-256 digest of its own content plus the digest of the event before it,
so editing or removing a stored event shows up in ``verify_integrity``.
Events are written inside the caller's atomic block and vanish with it on
rollback.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, to_storage_value

# Fields covered by an event's digest
HASHED_FIELDS = (
    "id", "sequence", "created_at", "event_type", "entity_type",
    "entity_id", "workspace_id", "previous_hash", "metadata",
)


class AuditEventType(Enum):
    """Types of audit events"""
    # Interest policy events
    POLICY_CREATED = "policy_created"
    POLICY_UPDATED = "policy_updated"
    POLICY_DELETED = "policy_deleted"

    # Loan events
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_CLOSED = "loan_closed"
    LOAN_REOPENED = "loan_reopened"
    LOAN_OVERDUE = "loan_overdue"
    INTEREST_ACCRUED = "interest_accrued"

    # Payment events
    PAYMENT_CREATED = "payment_created"
    PAYMENT_UPDATED = "payment_updated"
    PAYMENT_DELETED = "payment_deleted"
    ALLOCATION_APPLIED = "allocation_applied"
    ALLOCATION_REVERSED = "allocation_reversed"

    # Credit card events
    CREDIT_CARD_CREATED = "credit_card_created"
    CREDIT_CARD_CHARGED = "credit_card_charged"
    CREDIT_STATEMENT_GENERATED = "credit_statement_generated"
    CREDIT_PAYMENT_MADE = "credit_payment_made"

    # Installment events
    INSTALLMENT_PLAN_CREATED = "installment_plan_created"
    INSTALLMENT_PAID = "installment_paid"
    INSTALLMENT_UPDATED = "installment_updated"
    INSTALLMENT_PLAN_COMPLETED = "installment_plan_completed"
    INSTALLMENT_OVERDUE = "installment_overdue"

    # Customer credit events
    CUSTOMER_CREDIT_CREATED = "customer_credit_created"
    CUSTOMER_CREDIT_LIMIT_CHANGED = "customer_credit_limit_changed"
    CUSTOMER_CREDIT_APPLIED = "customer_credit_applied"
    CUSTOMER_CREDIT_RESTORED = "customer_credit_restored"
    RISK_ASSESSED = "risk_assessed"

    # Application events
    APPLICATION_CREATED = "application_created"
    APPLICATION_STATUS_CHANGED = "application_status_changed"
    APPLICATION_DISBURSED = "application_disbursed"

    # Collection events
    COLLECTION_CASE_CREATED = "collection_case_created"
    COLLECTION_ACTIVITY_LOGGED = "collection_activity_logged"
    COLLECTION_STATUS_CHANGED = "collection_status_changed"


@dataclass
class AuditEvent(StorageRecord):
    """One link of the audit chain"""
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    sequence: int
    previous_hash: str
    workspace_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    current_hash: str = ""

    def __post_init__(self):
        self.metadata = to_storage_value(self.metadata or {})

    def calculate_hash(self) -> str:
        stored = self.to_dict()
        payload = json.dumps({name: stored[name] for name in HASHED_FIELDS},
                             sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            sequence=data.get('sequence', 0),
            previous_hash=data.get('previous_hash', ""),
            workspace_id=data.get('workspace_id'),
            metadata=data.get('metadata'),
            current_hash=data.get('current_hash', "")
        )


class AuditTrail:
    """
    Writes and checks the audit chain stored in one table

    The chain head is read from storage on every write, so several trails
    over the same storage (or a trail outliving a rollback) stay linked.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events", enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _chain_head(self) -> Tuple[int, str]:
        """Sequence number and digest of the newest stored event"""
        rows = self.storage.load_all(self.table_name)
        if not rows:
            return 0, ""
        newest = max(rows, key=lambda row: row.get('sequence', 0))
        return newest.get('sequence', 0), newest.get('current_hash', "")

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        workspace_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Returns:
            The stored event, or None when the trail is disabled
        """
        if not self.enabled:
            return None

        with self.storage.atomic():
            sequence, head_hash = self._chain_head()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=sequence + 1,
                previous_hash=head_hash,
                workspace_id=workspace_id,
                metadata=metadata
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
        return event

    def _events(self) -> List[AuditEvent]:
        rows = sorted(self.storage.load_all(self.table_name), key=lambda row: row.get('sequence', 0))
        return [AuditEvent.from_dict(row) for row in rows]

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events of one entity, oldest first; limit keeps the newest"""
        events = [e for e in self._events() if (e.entity_type, e.entity_id) == (entity_type, entity_id)]
        return events[-limit:] if limit else events

    def get_events_by_type(self, event_type: AuditEventType,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        events = [e for e in self._events() if e.event_type == event_type]
        return events[-limit:] if limit else events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Recompute every digest and check every link

        Returns:
            ``valid``, ``total_events``, ``hash_errors`` (events whose stored
            digest no longer matches their content) and ``chain_breaks``
            (events whose previous_hash is not the digest before them)
        """
        events = self._events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            actual = event.calculate_hash()
            if actual != event.current_hash:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': actual,
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
