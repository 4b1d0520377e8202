"""
Payment Module

Records payments and applies them to loan balances through allocations.
Reading balances, computing the split and writing the new balances happen in
one atomic block, so concurrent payments against the same loan serialize.
Deleting a payment reverses its allocations exactly.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Union
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord, parse_date
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock
from .config import get_config
from .allocation import (
    AllocationItem, AllocationMethod, PaymentAllocation,
    auto_allocate, validate_manual_allocations
)
from .loans import Loan, LoanManager, LoanStatus, derive_status
from .exceptions import NotFoundError, LedgerValidationError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.payments")


@dataclass
class Payment(StorageRecord):
    """Money received (or paid) and split across loans"""
    workspace_id: str
    amount: Money
    payment_date: date
    note: Optional[str] = None
    attachment_url: Optional[str] = None
    allocation_method: Optional[str] = None  # None for manual allocations
    allocations: List[PaymentAllocation] = field(default_factory=list)

    @property
    def allocated(self) -> Money:
        total = Money.zero(self.amount.currency)
        for allocation in self.allocations:
            total = total + allocation.total
        return total

    @property
    def unallocated(self) -> Money:
        return self.amount - self.allocated


class PaymentManager:
    """
    Applies payments to loans and reverses them
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
        self.clock = clock or loan_manager.clock or get_clock()

        self.payments_table = "payments"
        self.allocations_table = "payment_allocations"

    def create_payment(
        self,
        workspace_id: str,
        amount: Money,
        payment_date: date,
        allocations: List[AllocationItem],
        note: Optional[str] = None,
        attachment_url: Optional[str] = None
    ) -> Payment:
        """
        Record a payment with caller-chosen allocations

        Each allocation is capped at what its loan still owes when applied;
        the capped amounts are what gets stored.

        Raises:
            AllocationExceedsPaymentError: Allocations add up to more than amount
            NotFoundError: An allocation names a loan outside the workspace
        """
        self._validate_amount(amount)
        validate_manual_allocations(allocations, amount)

        with self.storage.atomic():
            payment = self._new_payment(workspace_id, amount, payment_date, note, attachment_url, None)
            self.apply_allocations(payment, allocations)

        log_action(logger, "info", "Payment recorded", action="create_payment",
                   resource=payment.id, workspace_id=workspace_id,
                   extra={"amount": str(amount.amount), "allocations": len(payment.allocations)})
        return payment

    def auto_allocate_payment(
        self,
        workspace_id: str,
        amount: Money,
        payment_date: date,
        method: Optional[Union[AllocationMethod, str]] = None,
        borrower_id: Optional[str] = None,
        note: Optional[str] = None,
        attachment_url: Optional[str] = None
    ) -> Payment:
        """
        Record a payment split automatically over the open loans

        Args:
            workspace_id: Owning workspace
            amount: Payment amount
            payment_date: Date the money arrived
            method: Allocation method; configured default when omitted
            borrower_id: Restrict candidates to one borrower's loans
        """
        self._validate_amount(amount)
        method = AllocationMethod(method or get_config().default_allocation_method)

        with self.storage.atomic():
            open_loans = self.loan_manager.get_open_loans(workspace_id, borrower_id)
            items = auto_allocate(open_loans, amount, method)

            payment = self._new_payment(workspace_id, amount, payment_date, note, attachment_url, method.value)
            self.apply_allocations(payment, items)

        log_action(logger, "info", "Payment auto-allocated", action="auto_allocate_payment",
                   resource=payment.id, workspace_id=workspace_id,
                   extra={"amount": str(amount.amount), "method": method.value,
                          "loans": len(payment.allocations)})
        return payment

    def apply_allocations(self, payment: Payment, items: List[AllocationItem]) -> List[PaymentAllocation]:
        """
        Apply allocations to loan balances and persist them

        Balances are clamped at zero and each loan's status is recomputed
        (CLOSED iff no principal remains).
        """
        applied: List[PaymentAllocation] = []
        with self.storage.atomic():
            today = self.clock.today()
            for item in items:
                loan = self.loan_manager.get_loan(item.loan_id)
                if loan.workspace_id != payment.workspace_id:
                    raise NotFoundError("Loan", item.loan_id)

                principal_paid = min(item.principal_paid, loan.remaining_principal.clamp_zero())
                interest_paid = min(item.interest_paid, loan.accrued_interest.clamp_zero())
                if principal_paid.is_zero() and interest_paid.is_zero():
                    continue

                now = datetime.now(timezone.utc)
                allocation = PaymentAllocation(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    workspace_id=payment.workspace_id,
                    payment_id=payment.id,
                    loan_id=loan.id,
                    principal_paid=principal_paid,
                    interest_paid=interest_paid,
                    payment_date=payment.payment_date
                )
                self.audit_trail.log_event(
                    event_type=AuditEventType.ALLOCATION_APPLIED,
                    entity_type="loan",
                    entity_id=loan.id,
                    workspace_id=payment.workspace_id,
                    metadata={
                        "payment_id": payment.id,
                        "principal_paid": principal_paid.to_string(),
                        "interest_paid": interest_paid.to_string()
                    }
                )

                loan.remaining_principal = (loan.remaining_principal - principal_paid).clamp_zero()
                loan.accrued_interest = (loan.accrued_interest - interest_paid).clamp_zero()
                self._set_status(loan, today, payment.id)
                self.loan_manager.save_loan(loan)

                self.storage.save(self.allocations_table, allocation.id, allocation.to_dict())
                applied.append(allocation)

        payment.allocations.extend(applied)
        return applied

    def delete_payment(self, payment_id: str) -> None:
        """
        Delete a payment and give every allocated amount back to its loan

        A loan closed by the payment reopens (OVERDUE when already past due).
        """
        with self.storage.atomic():
            payment = self.get_payment(payment_id)
            today = self.clock.today()

            for allocation in payment.allocations:
                loan = self.loan_manager.get_loan(allocation.loan_id)
                loan.remaining_principal = loan.remaining_principal + allocation.principal_paid
                loan.accrued_interest = loan.accrued_interest + allocation.interest_paid
                self._set_status(loan, today, payment.id)
                self.loan_manager.save_loan(loan)

                self.storage.delete(self.allocations_table, allocation.id)
                self.audit_trail.log_event(
                    event_type=AuditEventType.ALLOCATION_REVERSED,
                    entity_type="loan",
                    entity_id=loan.id,
                    workspace_id=payment.workspace_id,
                    metadata={
                        "payment_id": payment.id,
                        "principal_restored": allocation.principal_paid.to_string(),
                        "interest_restored": allocation.interest_paid.to_string()
                    }
                )

            self.storage.delete(self.payments_table, payment_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_DELETED,
                entity_type="payment",
                entity_id=payment_id,
                workspace_id=payment.workspace_id,
                metadata={"amount": payment.amount.to_string(), "allocations": len(payment.allocations)}
            )

        log_action(logger, "info", "Payment deleted and reversed", action="delete_payment",
                   resource=payment_id, workspace_id=payment.workspace_id)

    def update_payment(
        self,
        payment_id: str,
        note: Optional[str] = None,
        payment_date: Optional[date] = None,
        attachment_url: Optional[str] = None
    ) -> Payment:
        """
        Edit payment details; amounts are fixed (delete and re-enter instead)

        Moving the payment date moves the accrual baseline of its loans.
        """
        with self.storage.atomic():
            payment = self.get_payment(payment_id)
            changes: Dict[str, str] = {}

            if note is not None:
                payment.note = note
                changes["note"] = note
            if attachment_url is not None:
                payment.attachment_url = attachment_url
                changes["attachment_url"] = attachment_url
            if payment_date is not None and payment_date != payment.payment_date:
                payment.payment_date = payment_date
                changes["payment_date"] = payment_date.isoformat()
                for allocation in payment.allocations:
                    allocation.payment_date = payment_date
                    allocation.updated_at = datetime.now(timezone.utc)
                    self.storage.save(self.allocations_table, allocation.id, allocation.to_dict())

            payment.updated_at = datetime.now(timezone.utc)
            self._save_payment(payment)
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_UPDATED,
                entity_type="payment",
                entity_id=payment_id,
                workspace_id=payment.workspace_id,
                metadata=changes
            )
        return payment

    def get_payment(self, payment_id: str) -> Payment:
        data = self.storage.load(self.payments_table, payment_id)
        if not data:
            raise NotFoundError("Payment", payment_id)
        payment = self._payment_from_dict(data)
        payment.allocations = self.get_payment_allocations(payment_id)
        return payment

    def get_payment_allocations(self, payment_id: str) -> List[PaymentAllocation]:
        rows = self.storage.find(self.allocations_table, {"payment_id": payment_id})
        allocations = [PaymentAllocation.from_dict(row) for row in rows]
        allocations.sort(key=lambda a: a.created_at)
        return allocations

    def get_workspace_payments(self, workspace_id: str) -> List[Payment]:
        """Payments of a workspace, newest payment date first"""
        rows = self.storage.find(self.payments_table, {"workspace_id": workspace_id})
        payments = []
        for row in rows:
            payment = self._payment_from_dict(row)
            payment.allocations = self.get_payment_allocations(payment.id)
            payments.append(payment)
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments

    def _validate_amount(self, amount: Money) -> None:
        if not amount.is_positive():
            raise LedgerValidationError("Payment amount must be positive")

    def _set_status(self, loan: Loan, today: date, payment_id: str) -> None:
        previous = loan.status
        loan.status = derive_status(loan, today)
        loan.updated_at = datetime.now(timezone.utc)

        if previous != LoanStatus.CLOSED and loan.status == LoanStatus.CLOSED:
            event_type = AuditEventType.LOAN_CLOSED
        elif previous == LoanStatus.CLOSED and loan.status != LoanStatus.CLOSED:
            event_type = AuditEventType.LOAN_REOPENED
        else:
            return

        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            workspace_id=loan.workspace_id,
            metadata={"payment_id": payment_id, "status": loan.status.value}
        )

    def _new_payment(self, workspace_id: str, amount: Money, payment_date: date,
                     note: Optional[str], attachment_url: Optional[str],
                     allocation_method: Optional[str]) -> Payment:
        now = datetime.now(timezone.utc)
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            amount=amount,
            payment_date=payment_date,
            note=note,
            attachment_url=attachment_url,
            allocation_method=allocation_method
        )
        self._save_payment(payment)
        self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_CREATED,
            entity_type="payment",
            entity_id=payment.id,
            workspace_id=workspace_id,
            metadata={
                "amount": amount.to_string(),
                "payment_date": payment_date,
                "allocation_method": allocation_method or "MANUAL"
            }
        )
        return payment

    def _save_payment(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))

    def _payment_to_dict(self, payment: Payment) -> Dict:
        result = payment.to_dict()
        result.pop('allocations', None)
        result['currency'] = payment.amount.currency.code
        return result

    def _payment_from_dict(self, data: Dict) -> Payment:
        currency = Currency[data.get('currency', 'THB')]
        return Payment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            amount=Money(Decimal(data['amount']), currency),
            payment_date=parse_date(data['payment_date']),
            note=data.get('note'),
            attachment_url=data.get('attachment_url'),
            allocation_method=data.get('allocation_method')
        )
