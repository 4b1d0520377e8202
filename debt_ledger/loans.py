"""
Loan Module

Loan origination, balance cache, status lifecycle and the accrual refresh.
Balances (remaining principal, accrued interest) are cached on the loan for
fast reads and can always be recomputed from the policy, the start date and
the payment history.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord, parse_date
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock
from .allocation import PaymentAllocation
from .interest import (
    InterestPolicyManager, InterestCalculationResult,
    calculate_outstanding_interest, calculate_interest_with_payments
)
from .exceptions import NotFoundError, LedgerValidationError, InvalidStateError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    OPEN = "OPEN"
    OVERDUE = "OVERDUE"
    CLOSED = "CLOSED"


class LoanType(Enum):
    """Which side of the debt the workspace is on"""
    RECEIVABLE = "RECEIVABLE"  # we are the lender
    PAYABLE = "PAYABLE"        # we are the borrower


@dataclass
class Loan(StorageRecord):
    """Loan contract with cached balances"""
    workspace_id: str
    borrower_id: str
    principal: Money
    remaining_principal: Money
    accrued_interest: Money
    start_date: date
    due_date: Optional[date] = None
    status: LoanStatus = LoanStatus.OPEN
    loan_type: LoanType = LoanType.RECEIVABLE
    lender_id: Optional[str] = None
    interest_policy_id: Optional[str] = None
    application_id: Optional[str] = None
    note: Optional[str] = None

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_active(self) -> bool:
        return self.status in (LoanStatus.OPEN, LoanStatus.OVERDUE)

    @property
    def outstanding(self) -> Money:
        """Remaining principal plus accrued interest"""
        return self.remaining_principal + self.accrued_interest

    def is_past_due(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today

    def days_past_due(self, today: date) -> int:
        if not self.is_past_due(today):
            return 0
        return (today - self.due_date).days


def derive_status(loan: Loan, today: date) -> LoanStatus:
    """Status implied by the balance: CLOSED iff nothing is left to repay"""
    if not loan.remaining_principal.is_positive():
        return LoanStatus.CLOSED
    if loan.is_past_due(today):
        return LoanStatus.OVERDUE
    return LoanStatus.OPEN


class LoanManager:
    """
    Manages loans and their cached balances
    """

    def __init__(
        self,
        storage: StorageInterface,
        policy_manager: InterestPolicyManager,
        audit_trail: AuditTrail,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.policy_manager = policy_manager
        self.audit_trail = audit_trail
        self.clock = clock or get_clock()

        self.loans_table = "loans"
        self.allocations_table = "payment_allocations"

    def create_loan(
        self,
        workspace_id: str,
        borrower_id: str,
        principal: Money,
        start_date: date,
        due_date: Optional[date] = None,
        loan_type: LoanType = LoanType.RECEIVABLE,
        interest_policy_id: Optional[str] = None,
        lender_id: Optional[str] = None,
        application_id: Optional[str] = None,
        note: Optional[str] = None
    ) -> Loan:
        """
        Originate a loan

        Args:
            workspace_id: Owning workspace
            borrower_id: Borrowing contact
            principal: Original amount (never changes after origination)
            start_date: Date interest starts accruing
            due_date: Optional repayment deadline
            loan_type: RECEIVABLE (we lend) or PAYABLE (we borrow)
            interest_policy_id: Optional policy; without one the loan accrues nothing

        Returns:
            Created Loan
        """
        if not principal.is_positive():
            raise LedgerValidationError("Loan principal must be positive")
        if due_date is not None and due_date < start_date:
            raise LedgerValidationError("Due date cannot be before start date")

        if interest_policy_id:
            policy = self.policy_manager.get_policy(interest_policy_id)
            if policy.workspace_id != workspace_id:
                raise NotFoundError("Interest policy", interest_policy_id)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            borrower_id=borrower_id,
            principal=principal,
            remaining_principal=principal,
            accrued_interest=Money.zero(principal.currency),
            start_date=start_date,
            due_date=due_date,
            loan_type=LoanType(loan_type),
            lender_id=lender_id,
            interest_policy_id=interest_policy_id,
            application_id=application_id,
            note=note
        )
        loan.status = derive_status(loan, self.clock.today())

        with self.storage.atomic():
            self._save_loan(loan)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                workspace_id=workspace_id,
                metadata={
                    "borrower_id": borrower_id,
                    "principal": principal.to_string(),
                    "start_date": start_date,
                    "due_date": due_date,
                    "loan_type": loan.loan_type.value,
                    "interest_policy_id": interest_policy_id
                }
            )

        log_action(logger, "info", "Loan created", action="create_loan",
                   resource=loan.id, workspace_id=workspace_id,
                   extra={"principal": str(principal.amount)})
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError("Loan", loan_id)
        return self._loan_from_dict(data)

    def get_workspace_loans(self, workspace_id: str, status: Optional[LoanStatus] = None) -> List[Loan]:
        """Loans of a workspace, oldest first"""
        filters: Dict[str, Any] = {"workspace_id": workspace_id}
        if status:
            filters["status"] = LoanStatus(status).value
        loans = [self._loan_from_dict(row) for row in self.storage.find(self.loans_table, filters)]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def get_borrower_loans(self, workspace_id: str, borrower_id: str) -> List[Loan]:
        return [loan for loan in self.get_workspace_loans(workspace_id) if loan.borrower_id == borrower_id]

    def get_open_loans(self, workspace_id: str, borrower_id: Optional[str] = None) -> List[Loan]:
        """OPEN and OVERDUE loans, in creation order"""
        loans = self.get_workspace_loans(workspace_id)
        return [
            loan for loan in loans
            if loan.is_active and (borrower_id is None or loan.borrower_id == borrower_id)
        ]

    def update_loan(
        self,
        loan_id: str,
        due_date: Optional[date] = None,
        note: Optional[str] = None,
        interest_policy_id: Optional[str] = None
    ) -> Loan:
        """Update editable loan terms; balances only change through payments"""
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            changes: Dict[str, Any] = {}

            if due_date is not None:
                if due_date < loan.start_date:
                    raise LedgerValidationError("Due date cannot be before start date")
                loan.due_date = due_date
                changes["due_date"] = due_date
            if note is not None:
                loan.note = note
                changes["note"] = note
            if interest_policy_id is not None:
                policy = self.policy_manager.get_policy(interest_policy_id)
                if policy.workspace_id != loan.workspace_id:
                    raise NotFoundError("Interest policy", interest_policy_id)
                loan.interest_policy_id = interest_policy_id
                changes["interest_policy_id"] = interest_policy_id

            loan.status = derive_status(loan, self.clock.today())
            loan.updated_at = datetime.now(timezone.utc)
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_UPDATED,
                entity_type="loan",
                entity_id=loan_id,
                workspace_id=loan.workspace_id,
                metadata=changes
            )
        return loan

    def extend_due_date(self, loan_id: str, new_due_date: date) -> Loan:
        """Push the due date later; an overdue loan that is no longer late reopens"""
        loan = self.get_loan(loan_id)
        if loan.status == LoanStatus.CLOSED:
            raise InvalidStateError("Cannot extend a closed loan")
        if loan.due_date is not None and new_due_date <= loan.due_date:
            raise LedgerValidationError("New due date must be after the current due date")
        return self.update_loan(loan_id, due_date=new_due_date)

    def get_loan_allocations(self, loan_id: str) -> List[PaymentAllocation]:
        rows = self.storage.find(self.allocations_table, {"loan_id": loan_id})
        allocations = [PaymentAllocation.from_dict(row) for row in rows]
        allocations.sort(key=lambda a: (a.payment_date, a.created_at))
        return allocations

    def refresh_accrued_interest(self, loan_id: str) -> Loan:
        """
        Recompute the cached accrued interest up to today

        Interest left unpaid at the latest payment is carried forward and
        new accrual restarts at that payment date (or the start date when
        nothing has been paid). Closed loans are left alone.
        """
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if loan.status == LoanStatus.CLOSED:
                return loan

            policy = self.policy_manager.find_policy(loan.interest_policy_id)
            allocations = self.get_loan_allocations(loan_id)
            accrued = calculate_outstanding_interest(loan, policy, allocations, self.clock)

            previous = loan.accrued_interest
            loan.accrued_interest = accrued
            loan.status = derive_status(loan, self.clock.today())
            loan.updated_at = datetime.now(timezone.utc)
            self._save_loan(loan)

            if accrued != previous:
                self.audit_trail.log_event(
                    event_type=AuditEventType.INTEREST_ACCRUED,
                    entity_type="loan",
                    entity_id=loan_id,
                    workspace_id=loan.workspace_id,
                    metadata={
                        "previous_accrued_interest": previous.to_string(),
                        "accrued_interest": accrued.to_string(),
                        "as_of": self.clock.today()
                    }
                )
        return loan

    def refresh_workspace_interest(self, workspace_id: str) -> int:
        """Refresh every active loan of a workspace; returns the loans refreshed"""
        refreshed = 0
        for loan in self.get_open_loans(workspace_id):
            self.refresh_accrued_interest(loan.id)
            refreshed += 1
        log_action(logger, "info", "Accrued interest refreshed", action="refresh_interest",
                   workspace_id=workspace_id, extra={"loans": refreshed})
        return refreshed

    def reconcile_interest(self, loan_id: str, to_date: Optional[date] = None) -> InterestCalculationResult:
        """
        Interest recomputed from origination, independent of the cache

        Principal is reduced at each payment date by the principal part of
        the payment.
        """
        loan = self.get_loan(loan_id)
        policy = self.policy_manager.find_policy(loan.interest_policy_id)
        return calculate_interest_with_payments(
            loan.principal,
            self.get_loan_allocations(loan_id),
            policy,
            loan.start_date,
            to_date or self.clock.today()
        )

    def mark_overdue_loans(self, workspace_id: Optional[str] = None) -> int:
        """
        Flag OPEN loans past their due date with principal left as OVERDUE

        Returns:
            Number of loans marked
        """
        today = self.clock.today()
        filters: Dict[str, Any] = {"status": LoanStatus.OPEN.value}
        if workspace_id:
            filters["workspace_id"] = workspace_id

        marked = 0
        with self.storage.atomic():
            for row in self.storage.find(self.loans_table, filters):
                loan = self._loan_from_dict(row)
                if not loan.is_past_due(today) or not loan.remaining_principal.is_positive():
                    continue

                loan.status = LoanStatus.OVERDUE
                loan.updated_at = datetime.now(timezone.utc)
                self._save_loan(loan)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_OVERDUE,
                    entity_type="loan",
                    entity_id=loan.id,
                    workspace_id=loan.workspace_id,
                    metadata={"due_date": loan.due_date, "days_past_due": loan.days_past_due(today)}
                )
                marked += 1

        if marked:
            log_action(logger, "info", "Loans marked overdue", action="mark_overdue_loans",
                       workspace_id=workspace_id, extra={"count": marked})
        return marked

    def get_loan_payment_summary(self, loan_id: str) -> Dict[str, Any]:
        """Totals paid against a loan and what is still outstanding"""
        loan = self.get_loan(loan_id)
        allocations = self.get_loan_allocations(loan_id)

        principal_paid = Money.zero(loan.currency)
        interest_paid = Money.zero(loan.currency)
        for allocation in allocations:
            principal_paid = principal_paid + allocation.principal_paid
            interest_paid = interest_paid + allocation.interest_paid

        return {
            "loan_id": loan.id,
            "status": loan.status.value,
            "principal": loan.principal.amount,
            "remaining_principal": loan.remaining_principal.amount,
            "accrued_interest": loan.accrued_interest.amount,
            "principal_paid": principal_paid.amount,
            "interest_paid": interest_paid.amount,
            "total_paid": (principal_paid + interest_paid).amount,
            "payment_count": len({a.payment_id for a in allocations}),
            "last_payment_date": allocations[-1].payment_date if allocations else None,
        }

    def save_loan(self, loan: Loan) -> None:
        """Persist a loan whose balances were changed by the caller"""
        self._save_loan(loan)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        result = loan.to_dict()
        result['currency'] = loan.currency.code
        return result

    def _loan_from_dict(self, data: Dict) -> Loan:
        currency = Currency[data.get('currency', 'THB')]

        def get_money(field_name: str) -> Money:
            return Money(Decimal(data[field_name]), currency)

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            borrower_id=data['borrower_id'],
            principal=get_money('principal'),
            remaining_principal=get_money('remaining_principal'),
            accrued_interest=get_money('accrued_interest'),
            start_date=parse_date(data['start_date']),
            due_date=parse_date(data.get('due_date')),
            status=LoanStatus(data['status']),
            loan_type=LoanType(data['loan_type']),
            lender_id=data.get('lender_id'),
            interest_policy_id=data.get('interest_policy_id'),
            application_id=data.get('application_id'),
            note=data.get('note')
        )
