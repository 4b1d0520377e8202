"""
Installment Module

Fixed-term installment plans with flat (simple) interest.

The financed amount is the total less the down payment. Interest for the
whole plan is financed x annual rate x terms / 12, split evenly across terms.
Each term's amount is the per-term total rounded up to a whole unit, so the
plan never under-collects.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord, parse_date
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock, add_months
from .exceptions import NotFoundError, LedgerValidationError, InvalidStateError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.installments")


class InstallmentPlanStatus(Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class InstallmentStatus(Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


@dataclass
class InstallmentTerm:
    """One row of a computed schedule"""
    term_number: int
    due_date: date
    amount: Money
    principal_amount: Money
    interest_amount: Money


@dataclass
class InstallmentSchedule:
    """Computed plan figures before anything is stored"""
    amount_to_finance: Money
    total_interest: Money
    term_amount: Money
    principal_per_term: Money
    interest_per_term: Money
    terms: List[InstallmentTerm] = field(default_factory=list)


@dataclass
class InstallmentPlan(StorageRecord):
    """Purchase paid off over a fixed number of monthly terms"""
    workspace_id: str
    contact_id: str
    item_name: str
    total_amount: Money
    down_payment: Money
    number_of_terms: int
    term_amount: Money
    interest_rate: Decimal          # percent per year, e.g. 12 for 12%
    start_date: date
    status: InstallmentPlanStatus = InstallmentPlanStatus.ACTIVE
    item_description: Optional[str] = None


@dataclass
class Installment(StorageRecord):
    """One term of an installment plan"""
    plan_id: str
    term_number: int
    due_date: date
    amount: Money
    principal_amount: Money
    interest_amount: Money
    paid_amount: Money
    paid_date: Optional[date] = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    slip_url: Optional[str] = None


def build_installment_schedule(
    total_amount: Money,
    down_payment: Money,
    number_of_terms: int,
    interest_rate: Decimal,
    start_date: date
) -> InstallmentSchedule:
    """
    Compute the flat-rate schedule for a plan

    Args:
        total_amount: Purchase price
        down_payment: Paid up front, not financed
        number_of_terms: Monthly terms (term n is due start_date + n months)
        interest_rate: Annual rate in percent
        start_date: Plan start

    Returns:
        InstallmentSchedule with one InstallmentTerm per month
    """
    if number_of_terms < 1:
        raise LedgerValidationError("Number of terms must be at least 1")
    if down_payment.is_negative():
        raise LedgerValidationError("Down payment cannot be negative")
    if down_payment >= total_amount:
        raise LedgerValidationError("Down payment must be less than the total amount")
    interest_rate = to_decimal(interest_rate)
    if interest_rate < 0:
        raise LedgerValidationError("Interest rate cannot be negative")

    currency = total_amount.currency
    terms = Decimal(number_of_terms)
    financed = total_amount.amount - down_payment.amount
    total_interest = financed * (interest_rate / Decimal('100')) * (terms / Decimal('12'))
    term_amount = ((financed + total_interest) / terms).to_integral_value(rounding=ROUND_CEILING)
    principal_per_term = Money(financed / terms, currency)
    interest_per_term = Money(total_interest / terms, currency)

    schedule = InstallmentSchedule(
        amount_to_finance=Money(financed, currency),
        total_interest=Money(total_interest, currency),
        term_amount=Money(term_amount, currency),
        principal_per_term=principal_per_term,
        interest_per_term=interest_per_term
    )
    for n in range(1, number_of_terms + 1):
        schedule.terms.append(InstallmentTerm(
            term_number=n,
            due_date=add_months(start_date, n),
            amount=schedule.term_amount,
            principal_amount=principal_per_term,
            interest_amount=interest_per_term
        ))
    return schedule


def installment_status_for(paid: Money, due: Money) -> InstallmentStatus:
    if paid >= due:
        return InstallmentStatus.PAID
    if paid.is_positive():
        return InstallmentStatus.PARTIAL
    return InstallmentStatus.PENDING


class InstallmentManager:
    """
    Manages installment plans and term payments
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, clock: Optional[Clock] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or get_clock()

        self.plans_table = "installment_plans"
        self.installments_table = "installments"

    def create_plan(
        self,
        workspace_id: str,
        contact_id: str,
        item_name: str,
        total_amount: Money,
        number_of_terms: int,
        start_date: date,
        down_payment: Optional[Money] = None,
        interest_rate: Decimal = Decimal('0'),
        item_description: Optional[str] = None
    ) -> InstallmentPlan:
        """Create a plan and its monthly installments"""
        down_payment = down_payment or Money.zero(total_amount.currency)
        schedule = build_installment_schedule(
            total_amount, down_payment, number_of_terms, interest_rate, start_date
        )

        now = datetime.now(timezone.utc)
        plan = InstallmentPlan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            contact_id=contact_id,
            item_name=item_name,
            total_amount=total_amount,
            down_payment=down_payment,
            number_of_terms=number_of_terms,
            term_amount=schedule.term_amount,
            interest_rate=to_decimal(interest_rate),
            start_date=start_date,
            item_description=item_description
        )

        with self.storage.atomic():
            self._save_plan(plan)
            for term in schedule.terms:
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    plan_id=plan.id,
                    term_number=term.term_number,
                    due_date=term.due_date,
                    amount=term.amount,
                    principal_amount=term.principal_amount,
                    interest_amount=term.interest_amount,
                    paid_amount=Money.zero(total_amount.currency)
                )
                self._save_installment(installment)

            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENT_PLAN_CREATED,
                entity_type="installment_plan",
                entity_id=plan.id,
                workspace_id=workspace_id,
                metadata={
                    "contact_id": contact_id,
                    "item_name": item_name,
                    "amount_to_finance": schedule.amount_to_finance.to_string(),
                    "total_interest": schedule.total_interest.to_string(),
                    "term_amount": schedule.term_amount.to_string(),
                    "number_of_terms": number_of_terms
                }
            )

        log_action(logger, "info", "Installment plan created", action="create_plan",
                   resource=plan.id, workspace_id=workspace_id,
                   extra={"terms": number_of_terms, "term_amount": str(schedule.term_amount.amount)})
        return plan

    def pay_installment(
        self,
        installment_id: str,
        amount: Money,
        payment_date: Optional[date] = None,
        slip_url: Optional[str] = None
    ) -> Installment:
        """Add a payment to a term; the plan completes when every term is paid"""
        if not amount.is_positive():
            raise LedgerValidationError("Payment amount must be positive")

        with self.storage.atomic():
            installment = self.get_installment(installment_id)
            if installment.status == InstallmentStatus.PAID:
                raise InvalidStateError(f"Installment {installment.term_number} is already paid")

            installment.paid_amount = installment.paid_amount + amount
            self._record_payment(installment, payment_date, slip_url)

            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENT_PAID,
                entity_type="installment",
                entity_id=installment_id,
                metadata={
                    "plan_id": installment.plan_id,
                    "term_number": installment.term_number,
                    "amount": amount.to_string(),
                    "paid_amount": installment.paid_amount.to_string(),
                    "status": installment.status.value
                }
            )
            self._refresh_plan_status(installment.plan_id)
        return installment

    def update_installment(
        self,
        installment_id: str,
        paid_amount: Money,
        payment_date: Optional[date] = None,
        slip_url: Optional[str] = None
    ) -> Installment:
        """Correct a recorded payment by replacing the paid amount"""
        if paid_amount.is_negative():
            raise LedgerValidationError("Paid amount cannot be negative")

        with self.storage.atomic():
            installment = self.get_installment(installment_id)
            previous = installment.paid_amount
            installment.paid_amount = paid_amount
            self._record_payment(installment, payment_date, slip_url)

            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENT_UPDATED,
                entity_type="installment",
                entity_id=installment_id,
                metadata={
                    "plan_id": installment.plan_id,
                    "previous_paid_amount": previous.to_string(),
                    "paid_amount": paid_amount.to_string(),
                    "status": installment.status.value
                }
            )
            self._refresh_plan_status(installment.plan_id)
        return installment

    def get_plan(self, plan_id: str) -> InstallmentPlan:
        data = self.storage.load(self.plans_table, plan_id)
        if not data:
            raise NotFoundError("Installment plan", plan_id)
        return self._plan_from_dict(data)

    def get_workspace_plans(self, workspace_id: str) -> List[InstallmentPlan]:
        rows = self.storage.find(self.plans_table, {"workspace_id": workspace_id})
        plans = [self._plan_from_dict(row) for row in rows]
        plans.sort(key=lambda p: p.created_at)
        return plans

    def get_installment(self, installment_id: str) -> Installment:
        data = self.storage.load(self.installments_table, installment_id)
        if not data:
            raise NotFoundError("Installment", installment_id)
        return self._installment_from_dict(data)

    def get_plan_installments(self, plan_id: str) -> List[Installment]:
        rows = self.storage.find(self.installments_table, {"plan_id": plan_id})
        installments = [self._installment_from_dict(row) for row in rows]
        installments.sort(key=lambda i: i.term_number)
        return installments

    def get_plan_summary(self, plan_id: str) -> Dict[str, Any]:
        """Paid, due and remaining totals plus progress for a plan"""
        plan = self.get_plan(plan_id)
        installments = self.get_plan_installments(plan_id)
        today = self.clock.today()
        currency = plan.total_amount.currency

        total_paid = Money.zero(currency)
        total_due = Money.zero(currency)
        for installment in installments:
            total_paid = total_paid + installment.paid_amount
            total_due = total_due + installment.amount

        paid_count = sum(1 for i in installments if i.status == InstallmentStatus.PAID)
        overdue_count = sum(
            1 for i in installments
            if i.status != InstallmentStatus.PAID and i.due_date < today
        )
        progress = int((Decimal(paid_count) * 100 / Decimal(plan.number_of_terms)).to_integral_value(rounding=ROUND_HALF_UP))

        return {
            "plan": plan,
            "installments": installments,
            "total_paid": total_paid,
            "total_due": total_due,
            "remaining_amount": total_due - total_paid,
            "paid_count": paid_count,
            "overdue_count": overdue_count,
            "progress": progress,
        }

    def update_overdue_installments(self, workspace_id: str) -> int:
        """
        Relabel PENDING and PARTIAL terms past their due date as OVERDUE

        Returns:
            Number of installments relabeled
        """
        today = self.clock.today()
        updated = 0

        with self.storage.atomic():
            for plan in self.get_workspace_plans(workspace_id):
                for installment in self.get_plan_installments(plan.id):
                    if installment.status not in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL):
                        continue
                    if installment.due_date >= today:
                        continue

                    installment.status = InstallmentStatus.OVERDUE
                    installment.updated_at = datetime.now(timezone.utc)
                    self._save_installment(installment)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.INSTALLMENT_OVERDUE,
                        entity_type="installment",
                        entity_id=installment.id,
                        workspace_id=workspace_id,
                        metadata={"plan_id": plan.id, "due_date": installment.due_date}
                    )
                    updated += 1

        if updated:
            log_action(logger, "info", "Installments marked overdue", action="update_overdue_installments",
                       workspace_id=workspace_id, extra={"count": updated})
        return updated

    def _record_payment(self, installment: Installment, payment_date: Optional[date],
                        slip_url: Optional[str]) -> None:
        installment.status = installment_status_for(installment.paid_amount, installment.amount)
        installment.paid_date = payment_date or self.clock.today()
        if slip_url is not None:
            installment.slip_url = slip_url
        installment.updated_at = datetime.now(timezone.utc)
        self._save_installment(installment)

    def _refresh_plan_status(self, plan_id: str) -> None:
        plan = self.get_plan(plan_id)
        installments = self.get_plan_installments(plan_id)
        all_paid = all(i.status == InstallmentStatus.PAID for i in installments)
        status = InstallmentPlanStatus.COMPLETED if all_paid else InstallmentPlanStatus.ACTIVE
        if status == plan.status:
            return

        plan.status = status
        plan.updated_at = datetime.now(timezone.utc)
        self._save_plan(plan)
        if status == InstallmentPlanStatus.COMPLETED:
            self.audit_trail.log_event(
                event_type=AuditEventType.INSTALLMENT_PLAN_COMPLETED,
                entity_type="installment_plan",
                entity_id=plan_id,
                workspace_id=plan.workspace_id,
                metadata={"number_of_terms": plan.number_of_terms}
            )
            log_action(logger, "info", "Installment plan completed", action="complete_plan",
                       resource=plan_id, workspace_id=plan.workspace_id)

    def _save_plan(self, plan: InstallmentPlan) -> None:
        data = plan.to_dict()
        data['currency'] = plan.total_amount.currency.code
        self.storage.save(self.plans_table, plan.id, data)

    def _save_installment(self, installment: Installment) -> None:
        data = installment.to_dict()
        data['currency'] = installment.amount.currency.code
        self.storage.save(self.installments_table, installment.id, data)

    def _plan_from_dict(self, data: Dict) -> InstallmentPlan:
        currency = Currency[data.get('currency', 'THB')]
        return InstallmentPlan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            contact_id=data['contact_id'],
            item_name=data['item_name'],
            total_amount=Money(Decimal(data['total_amount']), currency),
            down_payment=Money(Decimal(data['down_payment']), currency),
            number_of_terms=data['number_of_terms'],
            term_amount=Money(Decimal(data['term_amount']), currency),
            interest_rate=Decimal(data['interest_rate']),
            start_date=parse_date(data['start_date']),
            status=InstallmentPlanStatus(data['status']),
            item_description=data.get('item_description')
        )

    def _installment_from_dict(self, data: Dict) -> Installment:
        currency = Currency[data.get('currency', 'THB')]

        def get_money(field_name: str) -> Money:
            return Money(Decimal(data[field_name]), currency)

        return Installment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            plan_id=data['plan_id'],
            term_number=data['term_number'],
            due_date=parse_date(data['due_date']),
            amount=get_money('amount'),
            principal_amount=get_money('principal_amount'),
            interest_amount=get_money('interest_amount'),
            paid_amount=get_money('paid_amount'),
            paid_date=parse_date(data.get('paid_date')),
            status=InstallmentStatus(data['status']),
            slip_url=data.get('slip_url')
        )
