"""
Loan Application Module

Applications move PENDING -> REVIEWING -> APPROVED/REJECTED, and approval
with disbursement turns an application into a loan.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord, parse_datetime
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .loans import Loan, LoanManager
from .customer_credit import CustomerCreditManager
from .exceptions import NotFoundError, LedgerValidationError, InvalidStateError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.applications")


class ApplicationStatus(Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DISBURSED = "DISBURSED"


DISBURSABLE_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.REVIEWING, ApplicationStatus.APPROVED)
OPEN_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.REVIEWING)


@dataclass
class LoanApplication(StorageRecord):
    """Request for a loan from a contact"""
    workspace_id: str
    contact_id: str
    requested_amount: Money
    status: ApplicationStatus = ApplicationStatus.PENDING
    purpose: Optional[str] = None
    term_months: Optional[int] = None
    interest_policy_id: Optional[str] = None
    approved_amount: Optional[Money] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    approval_note: Optional[str] = None
    rejection_reason: Optional[str] = None
    loan_id: Optional[str] = None


class LoanApplicationManager:
    """
    Manages loan applications and their disbursement into loans
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        credit_manager: CustomerCreditManager,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.credit_manager = credit_manager
        self.audit_trail = audit_trail

        self.applications_table = "loan_applications"

    def create_application(
        self,
        workspace_id: str,
        contact_id: str,
        requested_amount: Money,
        purpose: Optional[str] = None,
        term_months: Optional[int] = None,
        interest_policy_id: Optional[str] = None
    ) -> LoanApplication:
        if not requested_amount.is_positive():
            raise LedgerValidationError("Requested amount must be positive")
        if term_months is not None and term_months < 1:
            raise LedgerValidationError("Term must be at least one month")
        if interest_policy_id:
            self.loan_manager.policy_manager.get_policy(interest_policy_id)

        now = datetime.now(timezone.utc)
        application = LoanApplication(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            contact_id=contact_id,
            requested_amount=requested_amount,
            purpose=purpose,
            term_months=term_months,
            interest_policy_id=interest_policy_id
        )

        with self.storage.atomic():
            self._save_application(application)
            self.audit_trail.log_event(
                event_type=AuditEventType.APPLICATION_CREATED,
                entity_type="loan_application",
                entity_id=application.id,
                workspace_id=workspace_id,
                metadata={"contact_id": contact_id, "requested_amount": requested_amount.to_string()}
            )

        log_action(logger, "info", "Loan application created", action="create_application",
                   resource=application.id, workspace_id=workspace_id)
        return application

    def update_status(
        self,
        application_id: str,
        status: ApplicationStatus,
        reviewed_by: str,
        approved_amount: Optional[Money] = None,
        note: Optional[str] = None
    ) -> LoanApplication:
        """
        Review an application

        Approval records the approved amount and note, rejection records the
        note as the reason. Disbursement goes through approve_and_disburse.
        """
        status = ApplicationStatus(status)
        if status == ApplicationStatus.DISBURSED:
            raise InvalidStateError("Use approve_and_disburse to disburse an application")

        with self.storage.atomic():
            application = self.get_application(application_id)
            if application.status in (ApplicationStatus.DISBURSED, ApplicationStatus.REJECTED):
                raise InvalidStateError(f"Application is already {application.status.value}")

            previous = application.status
            application.status = status
            application.reviewed_by = reviewed_by
            application.reviewed_at = datetime.now(timezone.utc)
            if status == ApplicationStatus.APPROVED:
                amount = approved_amount or application.requested_amount
                if not amount.is_positive():
                    raise LedgerValidationError("Approved amount must be positive")
                application.approved_amount = amount
                application.approval_note = note
            elif status == ApplicationStatus.REJECTED:
                application.rejection_reason = note

            application.updated_at = application.reviewed_at
            self._save_application(application)
            self.audit_trail.log_event(
                event_type=AuditEventType.APPLICATION_STATUS_CHANGED,
                entity_type="loan_application",
                entity_id=application_id,
                workspace_id=application.workspace_id,
                metadata={"previous_status": previous.value, "status": status.value,
                          "reviewed_by": reviewed_by}
            )

        log_action(logger, "info", f"Loan application {status.value.lower()}", action="update_application_status",
                   resource=application_id, workspace_id=application.workspace_id)
        return application

    def approve_and_disburse(
        self,
        application_id: str,
        reviewed_by: str,
        approved_amount: Money,
        start_date: date,
        due_date: Optional[date] = None,
        lender_id: Optional[str] = None,
        note: Optional[str] = None,
        use_customer_credit: bool = False
    ) -> Loan:
        """
        Approve an application and originate its loan

        Args:
            use_customer_credit: Draw the approved amount from the contact's
                credit line; fails when the line is missing or insufficient

        Returns:
            The new loan
        """
        with self.storage.atomic():
            application = self.get_application(application_id)
            if application.status not in DISBURSABLE_STATUSES:
                raise InvalidStateError(
                    f"Application in status {application.status.value} cannot be disbursed"
                )

            if use_customer_credit:
                credit = self.credit_manager.get_contact_credit(application.workspace_id, application.contact_id)
                if credit is None:
                    raise NotFoundError("Customer credit for contact", application.contact_id)
                self.credit_manager.apply_credit(credit.id, approved_amount,
                                                 reference=f"Loan application {application_id}")

            loan = self.loan_manager.create_loan(
                workspace_id=application.workspace_id,
                borrower_id=application.contact_id,
                principal=approved_amount,
                start_date=start_date,
                due_date=due_date,
                interest_policy_id=application.interest_policy_id,
                lender_id=lender_id,
                application_id=application_id,
                note=note
            )

            application.status = ApplicationStatus.DISBURSED
            application.approved_amount = approved_amount
            application.reviewed_by = reviewed_by
            application.reviewed_at = datetime.now(timezone.utc)
            application.approval_note = note
            application.loan_id = loan.id
            application.updated_at = application.reviewed_at
            self._save_application(application)

            self.audit_trail.log_event(
                event_type=AuditEventType.APPLICATION_DISBURSED,
                entity_type="loan_application",
                entity_id=application_id,
                workspace_id=application.workspace_id,
                metadata={"loan_id": loan.id, "approved_amount": approved_amount.to_string(),
                          "reviewed_by": reviewed_by}
            )

        log_action(logger, "info", "Loan application disbursed", action="approve_and_disburse",
                   resource=application_id, workspace_id=application.workspace_id,
                   extra={"loan_id": loan.id})
        return loan

    def get_application(self, application_id: str) -> LoanApplication:
        data = self.storage.load(self.applications_table, application_id)
        if not data:
            raise NotFoundError("Loan application", application_id)
        return self._application_from_dict(data)

    def get_workspace_applications(self, workspace_id: str) -> List[LoanApplication]:
        rows = self.storage.find(self.applications_table, {"workspace_id": workspace_id})
        applications = [self._application_from_dict(row) for row in rows]
        applications.sort(key=lambda a: a.created_at)
        return applications

    def get_pending_applications(self, workspace_id: str) -> List[LoanApplication]:
        """PENDING and REVIEWING applications, oldest first"""
        return [a for a in self.get_workspace_applications(workspace_id) if a.status in OPEN_STATUSES]

    def get_application_stats(self, workspace_id: str) -> Dict[str, Any]:
        applications = self.get_workspace_applications(workspace_id)
        currency = Currency[get_config().default_currency]

        counts = {status.value.lower(): 0 for status in ApplicationStatus}
        total_requested = Money.zero(currency)
        total_approved = Money.zero(currency)
        for application in applications:
            counts[application.status.value.lower()] += 1
            total_requested = total_requested + application.requested_amount
            if application.status in (ApplicationStatus.APPROVED, ApplicationStatus.DISBURSED) \
                    and application.approved_amount is not None:
                total_approved = total_approved + application.approved_amount

        counts.update({"total_requested": total_requested, "total_approved": total_approved})
        return counts

    def _save_application(self, application: LoanApplication) -> None:
        data = application.to_dict()
        data['currency'] = application.requested_amount.currency.code
        self.storage.save(self.applications_table, application.id, data)

    def _application_from_dict(self, data: Dict) -> LoanApplication:
        currency = Currency[data.get('currency', 'THB')]
        approved = data.get('approved_amount')
        return LoanApplication(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            contact_id=data['contact_id'],
            requested_amount=Money(Decimal(data['requested_amount']), currency),
            status=ApplicationStatus(data['status']),
            purpose=data.get('purpose'),
            term_months=data.get('term_months'),
            interest_policy_id=data.get('interest_policy_id'),
            approved_amount=Money(Decimal(approved), currency) if approved is not None else None,
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=parse_datetime(data.get('reviewed_at')),
            approval_note=data.get('approval_note'),
            rejection_reason=data.get('rejection_reason'),
            loan_id=data.get('loan_id')
        )
