"""
Customer Credit Module

Per-contact credit lines. Used plus available always equals the limit;
both move only through apply/restore, and every change leaves a history row.
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
from .loans import LoanManager
from .exceptions import NotFoundError, LedgerValidationError, InsufficientCreditError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.customer_credit")


class RiskLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class CreditChangeType(Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


@dataclass
class CustomerCredit(StorageRecord):
    """Credit line granted to a contact"""
    workspace_id: str
    contact_id: str
    credit_limit: Money
    used_credit: Money
    available_credit: Money
    risk_level: RiskLevel = RiskLevel.MEDIUM
    last_review_date: Optional[date] = None
    note: Optional[str] = None

    @property
    def utilization(self) -> Decimal:
        if not self.credit_limit.is_positive():
            return Decimal('0')
        return self.used_credit.amount / self.credit_limit.amount


@dataclass
class CreditHistory(StorageRecord):
    """One change to a credit line"""
    customer_credit_id: str
    change_type: CreditChangeType
    amount: Money
    reason: str
    previous_limit: Money
    new_limit: Money
    changed_by: Optional[str] = None


# Risk scoring
BASE_RISK_SCORE = 50
OVERDUE_LOAN_PENALTY = 15
REPAID_LOAN_BONUS = 5


def score_risk(overdue_loans: int, repaid_loans: int, utilization: Decimal) -> int:
    """Start at 50, adjust for loan history and utilization"""
    score = BASE_RISK_SCORE
    score -= OVERDUE_LOAN_PENALTY * overdue_loans
    score += REPAID_LOAN_BONUS * repaid_loans

    if utilization > Decimal('0.9'):
        score -= 10
    elif utilization > Decimal('0.7'):
        score -= 5
    elif utilization < Decimal('0.3'):
        score += 5
    return score


def risk_level_for_score(score: int) -> RiskLevel:
    if score >= 70:
        return RiskLevel.LOW
    if score >= 50:
        return RiskLevel.MEDIUM
    if score >= 30:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class CustomerCreditManager:
    """
    Manages customer credit lines and their history
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

        self.credits_table = "customer_credits"
        self.history_table = "credit_history"

    def create_credit(
        self,
        workspace_id: str,
        contact_id: str,
        credit_limit: Money,
        risk_level: Optional[RiskLevel] = None,
        note: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> CustomerCredit:
        """Open a credit line; a contact has at most one per workspace"""
        if credit_limit.is_negative():
            raise LedgerValidationError("Credit limit cannot be negative")
        risk_level = RiskLevel(risk_level or get_config().default_risk_level)

        with self.storage.atomic():
            if self.get_contact_credit(workspace_id, contact_id) is not None:
                raise LedgerValidationError(f"Contact {contact_id} already has a credit line")

            now = datetime.now(timezone.utc)
            credit = CustomerCredit(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                workspace_id=workspace_id,
                contact_id=contact_id,
                credit_limit=credit_limit,
                used_credit=Money.zero(credit_limit.currency),
                available_credit=credit_limit,
                risk_level=risk_level,
                note=note
            )
            self._save_credit(credit)
            self._log_history(credit, CreditChangeType.INCREASE, credit_limit, "Initial credit limit",
                              created_by, Money.zero(credit_limit.currency), credit_limit)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREDIT_CREATED,
                entity_type="customer_credit",
                entity_id=credit.id,
                workspace_id=workspace_id,
                metadata={"contact_id": contact_id, "credit_limit": credit_limit.to_string(),
                          "risk_level": risk_level.value}
            )

        log_action(logger, "info", "Customer credit created", action="create_credit",
                   resource=credit.id, workspace_id=workspace_id)
        return credit

    def update_credit_limit(self, credit_id: str, new_limit: Money, reason: str,
                            changed_by: Optional[str] = None) -> CustomerCredit:
        """
        Change the limit; available is recomputed and floored at zero when
        the new limit is below what is already used
        """
        if new_limit.is_negative():
            raise LedgerValidationError("Credit limit cannot be negative")

        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            previous_limit = credit.credit_limit
            change = new_limit - previous_limit

            credit.credit_limit = new_limit
            credit.available_credit = (new_limit - credit.used_credit).clamp_zero()
            credit.updated_at = datetime.now(timezone.utc)
            self._save_credit(credit)

            change_type = CreditChangeType.INCREASE if change.is_positive() else CreditChangeType.DECREASE
            self._log_history(credit, change_type, abs(change), reason, changed_by, previous_limit, new_limit)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREDIT_LIMIT_CHANGED,
                entity_type="customer_credit",
                entity_id=credit_id,
                workspace_id=credit.workspace_id,
                metadata={"previous_limit": previous_limit.to_string(),
                          "new_limit": new_limit.to_string(), "reason": reason}
            )

        log_action(logger, "info", "Credit limit changed", action="update_credit_limit",
                   resource=credit_id, workspace_id=credit.workspace_id,
                   extra={"previous_limit": str(previous_limit.amount), "new_limit": str(new_limit.amount)})
        return credit

    def apply_credit(self, credit_id: str, amount: Money, reference: Optional[str] = None) -> CustomerCredit:
        """
        Draw on the credit line

        Raises:
            InsufficientCreditError: If amount is more than the available credit
        """
        if not amount.is_positive():
            raise LedgerValidationError("Amount must be positive")

        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            if amount > credit.available_credit:
                raise InsufficientCreditError(
                    f"Insufficient credit (available {credit.available_credit.to_string()})"
                )

            credit.used_credit = credit.used_credit + amount
            credit.available_credit = credit.available_credit - amount
            credit.updated_at = datetime.now(timezone.utc)
            self._save_credit(credit)

            self._log_history(credit, CreditChangeType.DECREASE, amount, reference or "Credit used",
                              None, credit.credit_limit, credit.credit_limit)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREDIT_APPLIED,
                entity_type="customer_credit",
                entity_id=credit_id,
                workspace_id=credit.workspace_id,
                metadata={"amount": amount.to_string(), "reference": reference,
                          "available_credit": credit.available_credit.to_string()}
            )
        return credit

    def restore_credit(self, credit_id: str, amount: Money, reference: Optional[str] = None) -> CustomerCredit:
        """Give credit back after repayment, never more than is used"""
        if not amount.is_positive():
            raise LedgerValidationError("Amount must be positive")

        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            restored = min(amount, credit.used_credit)

            credit.used_credit = credit.used_credit - restored
            credit.available_credit = (credit.credit_limit - credit.used_credit).clamp_zero()
            credit.updated_at = datetime.now(timezone.utc)
            self._save_credit(credit)

            self._log_history(credit, CreditChangeType.INCREASE, restored, reference or "Credit restored",
                              None, credit.credit_limit, credit.credit_limit)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREDIT_RESTORED,
                entity_type="customer_credit",
                entity_id=credit_id,
                workspace_id=credit.workspace_id,
                metadata={"requested": amount.to_string(), "restored": restored.to_string(),
                          "reference": reference}
            )
        return credit

    def assess_risk_level(self, credit_id: str) -> RiskLevel:
        """Score the contact's loan history and utilization and store the level"""
        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            today = self.clock.today()
            loans = self.loan_manager.get_borrower_loans(credit.workspace_id, credit.contact_id)

            overdue = sum(
                1 for loan in loans
                if loan.is_past_due(today) and loan.remaining_principal.is_positive()
            )
            repaid = sum(1 for loan in loans if loan.remaining_principal.is_zero())
            score = score_risk(overdue, repaid, credit.utilization)
            level = risk_level_for_score(score)

            previous = credit.risk_level
            credit.risk_level = level
            credit.last_review_date = today
            credit.updated_at = datetime.now(timezone.utc)
            self._save_credit(credit)

            self.audit_trail.log_event(
                event_type=AuditEventType.RISK_ASSESSED,
                entity_type="customer_credit",
                entity_id=credit_id,
                workspace_id=credit.workspace_id,
                metadata={"score": score, "previous_level": previous.value, "risk_level": level.value,
                          "overdue_loans": overdue, "repaid_loans": repaid}
            )

        log_action(logger, "info", "Risk level assessed", action="assess_risk_level",
                   resource=credit_id, workspace_id=credit.workspace_id,
                   extra={"score": score, "risk_level": level.value})
        return level

    def get_credit(self, credit_id: str) -> CustomerCredit:
        data = self.storage.load(self.credits_table, credit_id)
        if not data:
            raise NotFoundError("Customer credit", credit_id)
        return self._credit_from_dict(data)

    def get_contact_credit(self, workspace_id: str, contact_id: str) -> Optional[CustomerCredit]:
        rows = self.storage.find(self.credits_table, {"workspace_id": workspace_id, "contact_id": contact_id})
        return self._credit_from_dict(rows[0]) if rows else None

    def get_workspace_credits(self, workspace_id: str) -> List[CustomerCredit]:
        rows = self.storage.find(self.credits_table, {"workspace_id": workspace_id})
        credits = [self._credit_from_dict(row) for row in rows]
        credits.sort(key=lambda c: c.created_at)
        return credits

    def get_credit_history(self, credit_id: str) -> List[CreditHistory]:
        """History of a credit line, newest first"""
        self.get_credit(credit_id)
        rows = self.storage.find(self.history_table, {"customer_credit_id": credit_id})
        history = [self._history_from_dict(row) for row in rows]
        history.sort(key=lambda h: (h.created_at, h.id), reverse=True)
        return history

    def get_credit_stats(self, workspace_id: str) -> Dict[str, Any]:
        """Totals across a workspace's credit lines, with a breakdown by risk level"""
        credits = self.get_workspace_credits(workspace_id)
        currency = Currency[get_config().default_currency]

        total_limit = Money.zero(currency)
        total_used = Money.zero(currency)
        total_available = Money.zero(currency)
        by_risk: Dict[str, Dict[str, Any]] = {}

        for credit in credits:
            total_limit = total_limit + credit.credit_limit
            total_used = total_used + credit.used_credit
            total_available = total_available + credit.available_credit

            bucket = by_risk.setdefault(credit.risk_level.value,
                                        {"count": 0, "credit_limit": Money.zero(currency)})
            bucket["count"] += 1
            bucket["credit_limit"] = bucket["credit_limit"] + credit.credit_limit

        return {
            "total_customers": len(credits),
            "total_credit_limit": total_limit,
            "total_used_credit": total_used,
            "total_available_credit": total_available,
            "by_risk": by_risk,
        }

    def _log_history(self, credit: CustomerCredit, change_type: CreditChangeType, amount: Money,
                     reason: str, changed_by: Optional[str], previous_limit: Money, new_limit: Money) -> None:
        now = datetime.now(timezone.utc)
        entry = CreditHistory(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_credit_id=credit.id,
            change_type=change_type,
            amount=amount,
            reason=reason,
            previous_limit=previous_limit,
            new_limit=new_limit,
            changed_by=changed_by
        )
        data = entry.to_dict()
        data['currency'] = amount.currency.code
        self.storage.save(self.history_table, entry.id, data)

    def _save_credit(self, credit: CustomerCredit) -> None:
        data = credit.to_dict()
        data['currency'] = credit.credit_limit.currency.code
        self.storage.save(self.credits_table, credit.id, data)

    def _credit_from_dict(self, data: Dict) -> CustomerCredit:
        currency = Currency[data.get('currency', 'THB')]
        return CustomerCredit(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            contact_id=data['contact_id'],
            credit_limit=Money(Decimal(data['credit_limit']), currency),
            used_credit=Money(Decimal(data['used_credit']), currency),
            available_credit=Money(Decimal(data['available_credit']), currency),
            risk_level=RiskLevel(data['risk_level']),
            last_review_date=parse_date(data.get('last_review_date')),
            note=data.get('note')
        )

    def _history_from_dict(self, data: Dict) -> CreditHistory:
        currency = Currency[data.get('currency', 'THB')]
        return CreditHistory(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_credit_id=data['customer_credit_id'],
            change_type=CreditChangeType(data['change_type']),
            amount=Money(Decimal(data['amount']), currency),
            reason=data['reason'],
            previous_limit=Money(Decimal(data['previous_limit']), currency),
            new_limit=Money(Decimal(data['new_limit']), currency),
            changed_by=data.get('changed_by')
        )
