"""
Collections Module

Collection cases for overdue loans, the activities logged against them,
and the batch pass that opens cases for newly overdue loans.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord, parse_date
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock
from .config import get_config
from .interest import calculate_outstanding_interest
from .loans import Loan, LoanManager
from .exceptions import NotFoundError, LedgerValidationError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.collections")


class CollectionStatus(Enum):
    ACTIVE = "ACTIVE"
    PROMISED = "PROMISED"        # borrower promised to pay
    PARTIAL = "PARTIAL"          # partly paid
    RESOLVED = "RESOLVED"
    WRITTEN_OFF = "WRITTEN_OFF"
    LEGAL = "LEGAL"


class CollectionPriority(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ActivityType(Enum):
    CALL = "CALL"
    SMS = "SMS"
    EMAIL = "EMAIL"
    VISIT = "VISIT"
    LETTER = "LETTER"
    PAYMENT = "PAYMENT"
    NOTE = "NOTE"


PENDING_STATUSES = (CollectionStatus.ACTIVE, CollectionStatus.PROMISED, CollectionStatus.PARTIAL)


@dataclass
class CollectionCase(StorageRecord):
    """Follow-up on an overdue loan"""
    workspace_id: str
    loan_id: str
    contact_id: str
    total_outstanding: Money
    principal_due: Money
    interest_due: Money
    days_past_due: int
    priority: CollectionPriority = CollectionPriority.NORMAL
    status: CollectionStatus = CollectionStatus.ACTIVE
    assigned_to: Optional[str] = None
    last_contact_date: Optional[date] = None


@dataclass
class CollectionActivity(StorageRecord):
    """Contact attempt or event on a case"""
    case_id: str
    activity_type: ActivityType
    description: str
    created_by: Optional[str] = None
    promised_amount: Optional[Money] = None
    promised_date: Optional[date] = None
    outcome: Optional[str] = None


def priority_for_days_past_due(days_past_due: int) -> CollectionPriority:
    """Priority bands from the configured day thresholds"""
    config = get_config()
    if days_past_due > config.collection_critical_after_days:
        return CollectionPriority.CRITICAL
    if days_past_due > config.collection_high_after_days:
        return CollectionPriority.HIGH
    if days_past_due > config.collection_normal_after_days:
        return CollectionPriority.NORMAL
    return CollectionPriority.LOW


class CollectionManager:
    """
    Manages collection cases and activities
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        audit_trail: AuditTrail,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.clock = clock or get_clock()

        self.cases_table = "collection_cases"
        self.activities_table = "collection_activities"

    def create_case(
        self,
        workspace_id: str,
        loan_id: str,
        total_outstanding: Money,
        principal_due: Money,
        interest_due: Money,
        days_past_due: int,
        contact_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        priority: Optional[CollectionPriority] = None
    ) -> CollectionCase:
        loan = self.loan_manager.get_loan(loan_id)
        if loan.workspace_id != workspace_id:
            raise NotFoundError("Loan", loan_id)
        if days_past_due < 0:
            raise LedgerValidationError("Days past due cannot be negative")

        now = datetime.now(timezone.utc)
        case = CollectionCase(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            loan_id=loan_id,
            contact_id=contact_id or loan.borrower_id,
            total_outstanding=total_outstanding,
            principal_due=principal_due,
            interest_due=interest_due,
            days_past_due=days_past_due,
            priority=CollectionPriority(priority or CollectionPriority.NORMAL),
            assigned_to=assigned_to
        )

        with self.storage.atomic():
            self._save_case(case)
            self.audit_trail.log_event(
                event_type=AuditEventType.COLLECTION_CASE_CREATED,
                entity_type="collection_case",
                entity_id=case.id,
                workspace_id=workspace_id,
                metadata={"loan_id": loan_id, "total_outstanding": total_outstanding.to_string(),
                          "days_past_due": days_past_due, "priority": case.priority.value}
            )

        log_action(logger, "info", "Collection case created", action="create_case",
                   resource=case.id, workspace_id=workspace_id,
                   extra={"loan_id": loan_id, "priority": case.priority.value})
        return case

    def log_activity(
        self,
        case_id: str,
        activity_type: ActivityType,
        description: str,
        created_by: Optional[str] = None,
        promised_amount: Optional[Money] = None,
        promised_date: Optional[date] = None,
        outcome: Optional[str] = None
    ) -> CollectionActivity:
        """Record an activity and stamp the case's last contact date"""
        with self.storage.atomic():
            case = self.get_case(case_id)
            now = datetime.now(timezone.utc)
            activity = CollectionActivity(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                case_id=case_id,
                activity_type=ActivityType(activity_type),
                description=description,
                created_by=created_by,
                promised_amount=promised_amount,
                promised_date=promised_date,
                outcome=outcome
            )
            data = activity.to_dict()
            data['currency'] = case.total_outstanding.currency.code
            self.storage.save(self.activities_table, activity.id, data)

            case.last_contact_date = self.clock.today()
            case.updated_at = now
            self._save_case(case)

            self.audit_trail.log_event(
                event_type=AuditEventType.COLLECTION_ACTIVITY_LOGGED,
                entity_type="collection_case",
                entity_id=case_id,
                workspace_id=case.workspace_id,
                metadata={"activity_id": activity.id, "activity_type": activity.activity_type.value}
            )
        return activity

    def update_case_status(self, case_id: str, status: CollectionStatus) -> CollectionCase:
        status = CollectionStatus(status)
        with self.storage.atomic():
            case = self.get_case(case_id)
            previous = case.status
            case.status = status
            case.updated_at = datetime.now(timezone.utc)
            self._save_case(case)
            self.audit_trail.log_event(
                event_type=AuditEventType.COLLECTION_STATUS_CHANGED,
                entity_type="collection_case",
                entity_id=case_id,
                workspace_id=case.workspace_id,
                metadata={"previous_status": previous.value, "status": status.value}
            )

        log_action(logger, "info", "Collection case status changed", action="update_case_status",
                   resource=case_id, workspace_id=case.workspace_id,
                   extra={"status": status.value})
        return case

    def get_case(self, case_id: str) -> CollectionCase:
        data = self.storage.load(self.cases_table, case_id)
        if not data:
            raise NotFoundError("Collection case", case_id)
        return self._case_from_dict(data)

    def get_workspace_cases(self, workspace_id: str) -> List[CollectionCase]:
        rows = self.storage.find(self.cases_table, {"workspace_id": workspace_id})
        cases = [self._case_from_dict(row) for row in rows]
        cases.sort(key=lambda c: c.created_at)
        return cases

    def get_pending_cases(self, workspace_id: str) -> List[CollectionCase]:
        """Cases still being worked, most days past due first"""
        cases = [c for c in self.get_workspace_cases(workspace_id) if c.status in PENDING_STATUSES]
        cases.sort(key=lambda c: c.days_past_due, reverse=True)
        return cases

    def get_case_activities(self, case_id: str) -> List[CollectionActivity]:
        """Activities of a case, newest first"""
        rows = self.storage.find(self.activities_table, {"case_id": case_id})
        activities = [self._activity_from_dict(row) for row in rows]
        activities.sort(key=lambda a: a.created_at, reverse=True)
        return activities

    def auto_create_collection_cases(self, workspace_id: str) -> List[CollectionCase]:
        """
        Open a case for every past-due loan with principal left and no
        case still being worked

        Interest due includes interest left unpaid by earlier payments.
        """
        today = self.clock.today()
        created: List[CollectionCase] = []

        with self.storage.atomic():
            covered = {c.loan_id for c in self.get_pending_cases(workspace_id)}
            for loan in self.loan_manager.get_workspace_loans(workspace_id):
                if loan.id in covered:
                    continue
                if not loan.is_past_due(today) or not loan.remaining_principal.is_positive():
                    continue

                interest_due = self._interest_due(loan)
                days_past_due = loan.days_past_due(today)
                created.append(self.create_case(
                    workspace_id=workspace_id,
                    loan_id=loan.id,
                    contact_id=loan.borrower_id,
                    total_outstanding=loan.remaining_principal + interest_due,
                    principal_due=loan.remaining_principal,
                    interest_due=interest_due,
                    days_past_due=days_past_due,
                    priority=priority_for_days_past_due(days_past_due)
                ))

        if created:
            log_action(logger, "info", "Collection cases opened", action="auto_create_collection_cases",
                       workspace_id=workspace_id, extra={"count": len(created)})
        return created

    def get_collection_stats(self, workspace_id: str) -> Dict[str, Any]:
        cases = self.get_workspace_cases(workspace_id)
        counts = {status.value.lower(): 0 for status in CollectionStatus}
        total_outstanding = Money.zero(Currency[get_config().default_currency])

        for case in cases:
            counts[case.status.value.lower()] += 1
            if case.status in PENDING_STATUSES:
                total_outstanding = total_outstanding + case.total_outstanding

        counts["total_active"] = counts["active"] + counts["promised"] + counts["partial"]
        counts["total_outstanding"] = total_outstanding
        return counts

    def _interest_due(self, loan: Loan) -> Money:
        policy = self.loan_manager.policy_manager.find_policy(loan.interest_policy_id)
        allocations = self.loan_manager.get_loan_allocations(loan.id)
        return calculate_outstanding_interest(loan, policy, allocations, self.clock)

    def _save_case(self, case: CollectionCase) -> None:
        data = case.to_dict()
        data['currency'] = case.total_outstanding.currency.code
        self.storage.save(self.cases_table, case.id, data)

    def _case_from_dict(self, data: Dict) -> CollectionCase:
        currency = Currency[data.get('currency', 'THB')]
        return CollectionCase(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            loan_id=data['loan_id'],
            contact_id=data['contact_id'],
            total_outstanding=Money(Decimal(data['total_outstanding']), currency),
            principal_due=Money(Decimal(data['principal_due']), currency),
            interest_due=Money(Decimal(data['interest_due']), currency),
            days_past_due=data['days_past_due'],
            priority=CollectionPriority(data['priority']),
            status=CollectionStatus(data['status']),
            assigned_to=data.get('assigned_to'),
            last_contact_date=parse_date(data.get('last_contact_date'))
        )

    def _activity_from_dict(self, data: Dict) -> CollectionActivity:
        currency = Currency[data.get('currency', 'THB')]
        promised = data.get('promised_amount')
        return CollectionActivity(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            case_id=data['case_id'],
            activity_type=ActivityType(data['activity_type']),
            description=data['description'],
            created_by=data.get('created_by'),
            promised_amount=Money(Decimal(promised), currency) if promised is not None else None,
            promised_date=parse_date(data.get('promised_date')),
            outcome=data.get('outcome')
        )
