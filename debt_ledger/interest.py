"""
Interest Engine Module

Calculates accrued interest on loans under an interest policy. Two modes:

* DAILY   - principal x daily rate x days
* MONTHLY - month-by-month walk between billing anchors; full anchor-to-anchor
            months are charged the flat monthly rate, partial periods are
            prorated daily by the days of the month they start in.

Also provides the Thai usury-law advisory check and the interest policy
manager. The calculation functions are pure and never touch storage.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
from enum import Enum
import logging
import uuid

from .currency import Money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock, days_in_month, days_between, next_month, clamp_day
from .config import get_config
from .exceptions import NotFoundError, LedgerValidationError, PolicyInUseError
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.interest")


class InterestMode(Enum):
    """How a policy charges interest"""
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


# Annual ceilings under Thai law
LEGAL_INTEREST_LIMITS: Dict[str, Decimal] = {
    "natural_person": Decimal('0.15'),  # Civil and Commercial Code s.654
}

DAYS_PER_YEAR = Decimal('365')
MONTHS_PER_YEAR = Decimal('12')


@dataclass
class InterestPolicy(StorageRecord):
    """Interest policy owned by a workspace"""
    workspace_id: str
    name: str
    mode: InterestMode
    monthly_rate: Optional[Decimal] = None  # e.g. 0.01 for 1% per month
    daily_rate: Optional[Decimal] = None
    anchor_day: int = 1                      # billing-cycle anchor for MONTHLY
    grace_days: int = 0

    def __post_init__(self):
        if not isinstance(self.mode, InterestMode):
            self.mode = InterestMode(self.mode)
        if self.monthly_rate is not None:
            self.monthly_rate = to_decimal(self.monthly_rate)
        if self.daily_rate is not None:
            self.daily_rate = to_decimal(self.daily_rate)

        if self.rate is None:
            raise LedgerValidationError(f"{self.mode.value} policy requires a {self.mode.value.lower()} rate")
        for value in (self.monthly_rate, self.daily_rate):
            if value is not None and not Decimal('0') <= value <= Decimal('1'):
                raise LedgerValidationError("Interest rate must be between 0 and 1")
        if not 1 <= self.anchor_day <= 31:
            raise LedgerValidationError("Anchor day must be between 1 and 31")
        if self.grace_days < 0:
            raise LedgerValidationError("Grace days cannot be negative")

    @property
    def rate(self) -> Optional[Decimal]:
        """Rate that applies to the policy's mode"""
        if self.mode == InterestMode.DAILY:
            return self.daily_rate
        return self.monthly_rate


@dataclass
class InterestBreakdownEntry:
    """One period of an interest calculation"""
    date: date
    principal: Decimal
    interest: Decimal
    rate: Decimal
    days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "principal": str(self.principal),
            "interest": str(self.interest),
            "rate": str(self.rate),
            "days": self.days,
        }


@dataclass
class InterestCalculationResult:
    """Unrounded interest total plus the per-period audit breakdown"""
    total_interest: Decimal = Decimal('0')
    breakdown: List[InterestBreakdownEntry] = field(default_factory=list)

    def extend(self, other: 'InterestCalculationResult') -> None:
        self.total_interest += other.total_interest
        self.breakdown.extend(other.breakdown)

    def as_money(self, currency=None) -> Money:
        if currency is None:
            return Money(self.total_interest)
        return Money(self.total_interest, currency)


@dataclass
class LegalityCheck:
    """Result of the usury advisory"""
    is_legal: bool
    annual_rate: Decimal
    limit: Decimal
    message: str


def _amount(value: Union[Money, Decimal, int, str]) -> Decimal:
    if isinstance(value, Money):
        return value.amount
    return to_decimal(value)


def calculate_daily_interest(
    principal: Decimal,
    daily_rate: Decimal,
    from_date: date,
    to_date: date
) -> InterestCalculationResult:
    """Simple daily interest over the whole range, one breakdown entry"""
    days = days_between(from_date, to_date)
    interest = principal * daily_rate * days
    return InterestCalculationResult(
        total_interest=interest,
        breakdown=[InterestBreakdownEntry(from_date, principal, interest, daily_rate, days)]
    )


def calculate_monthly_interest(
    principal: Decimal,
    monthly_rate: Decimal,
    anchor_day: int,
    from_date: date,
    to_date: date
) -> InterestCalculationResult:
    """
    Walk the range from anchor to anchor.

    Each iteration ends at the next anchor (this month's when the cursor is
    before it, otherwise next month's) or at to_date, whichever comes first.
    A period that runs from one effective anchor to the next and lasts at
    least 28 days is a full month; anything else is prorated with the daily
    rate of the cursor's month.
    """
    result = InterestCalculationResult()
    cursor = from_date

    while cursor < to_date:
        month_days = days_in_month(cursor.year, cursor.month)
        daily_rate = monthly_rate / Decimal(month_days)

        cursor_month_anchor = clamp_day(cursor.year, cursor.month, anchor_day)
        anchor = cursor_month_anchor
        if cursor >= anchor:
            year, month = next_month(cursor.year, cursor.month)
            anchor = clamp_day(year, month, anchor_day)

        period_end = min(anchor, to_date)
        period_days = days_between(cursor, period_end)

        is_full_month = (
            cursor == cursor_month_anchor
            and period_end == anchor
            and period_days >= 28
        )

        if is_full_month:
            interest = principal * monthly_rate
            rate = monthly_rate
        else:
            interest = principal * daily_rate * period_days
            rate = daily_rate

        result.breakdown.append(InterestBreakdownEntry(cursor, principal, interest, rate, period_days))
        result.total_interest += interest
        cursor = period_end

    return result


def calculate_interest_for_principal(
    principal: Decimal,
    policy: Optional[InterestPolicy],
    from_date: date,
    to_date: date
) -> InterestCalculationResult:
    """Dispatch on policy mode; degenerate inputs give zero interest"""
    if policy is None or principal <= 0 or to_date <= from_date:
        return InterestCalculationResult()

    if policy.mode == InterestMode.DAILY:
        return calculate_daily_interest(principal, policy.daily_rate, from_date, to_date)

    return calculate_monthly_interest(
        principal, policy.monthly_rate, policy.anchor_day or 1, from_date, to_date
    )


def calculate_interest(
    loan,
    from_date: date,
    to_date: date,
    policy: Optional[InterestPolicy] = None
) -> InterestCalculationResult:
    """
    Interest on a loan's remaining principal between two dates.

    Args:
        loan: Anything with a ``remaining_principal`` (Money or Decimal)
        from_date: Start of the range (inclusive)
        to_date: End of the range
        policy: The loan's interest policy; None accrues nothing

    Returns:
        InterestCalculationResult with the unrounded total and breakdown
    """
    return calculate_interest_for_principal(
        _amount(loan.remaining_principal), policy, from_date, to_date
    )


def calculate_interest_with_payments(
    initial_principal: Union[Money, Decimal],
    payments: Iterable,
    policy: Optional[InterestPolicy],
    from_date: date,
    to_date: date
) -> InterestCalculationResult:
    """
    Recompute interest from scratch when principal was repaid mid-period.

    The range is split at every payment date inside (from_date, to_date];
    each segment accrues on the principal outstanding during it.

    Args:
        initial_principal: Principal outstanding at from_date
        payments: Objects with ``payment_date`` and ``principal_paid``
        policy: Interest policy
        from_date: Start of the range
        to_date: End of the range
    """
    result = InterestCalculationResult()
    principal = _amount(initial_principal)
    period_start = from_date

    for payment in sorted(payments, key=lambda p: p.payment_date):
        if period_start < payment.payment_date <= to_date:
            result.extend(calculate_interest_for_principal(principal, policy, period_start, payment.payment_date))
            principal -= _amount(payment.principal_paid)
            period_start = payment.payment_date

    if period_start < to_date and principal > 0:
        result.extend(calculate_interest_for_principal(principal, policy, period_start, to_date))

    return result


def calculate_accrued_interest(
    loan,
    policy: Optional[InterestPolicy],
    last_payment_date: Optional[date] = None,
    clock: Optional[Clock] = None
) -> Money:
    """
    Interest accrued from the last payment (or loan start) up to today.

    "Today" comes from the clock (UTC+7, date granularity). A baseline on or
    after today accrues nothing.
    """
    clock = clock or get_clock()
    today = clock.today()
    baseline = last_payment_date or loan.start_date
    currency = loan.remaining_principal.currency

    if baseline >= today:
        return Money.zero(currency)

    return calculate_interest(loan, baseline, today, policy).as_money(currency)


def calculate_accrued_interest_from_payments(
    loan,
    policy: Optional[InterestPolicy],
    allocations: Iterable,
    clock: Optional[Clock] = None
) -> Money:
    """Accrued interest restarting from the most recent payment date"""
    payment_dates = [a.payment_date for a in allocations if a.payment_date]
    last_payment_date = max(payment_dates) if payment_dates else None
    return calculate_accrued_interest(loan, policy, last_payment_date, clock)


def calculate_outstanding_interest(
    loan,
    policy: Optional[InterestPolicy],
    allocations: Iterable,
    clock: Optional[Clock] = None
) -> Money:
    """
    Interest the borrower still owes today.

    Interest left unpaid at the last payment date is carried: everything
    accrued from the start date up to that payment, with principal reduced
    at each payment, less all interest paid. Accrual since the last payment
    is added on top.

    Args:
        loan: Loan with ``principal``, ``remaining_principal`` and ``start_date``
        policy: Interest policy (None accrues nothing)
        allocations: Objects with ``payment_date``, ``principal_paid`` and ``interest_paid``
        clock: Source of today
    """
    allocations = [a for a in allocations if a.payment_date]
    currency = loan.remaining_principal.currency
    since_last_payment = calculate_accrued_interest_from_payments(loan, policy, allocations, clock)
    if not allocations:
        return since_last_payment

    last_payment_date = max(a.payment_date for a in allocations)
    opening_principal = _amount(loan.principal) - sum(
        (_amount(a.principal_paid) for a in allocations if a.payment_date <= loan.start_date), Decimal('0')
    )
    later = [a for a in allocations if a.payment_date > loan.start_date]
    accrued_to_last_payment = calculate_interest_with_payments(
        opening_principal, later, policy, loan.start_date, last_payment_date
    ).total_interest
    interest_paid = sum((_amount(a.interest_paid) for a in allocations), Decimal('0'))

    carried = Money(accrued_to_last_payment - interest_paid, currency).clamp_zero()
    return carried + since_last_payment


def annualize_rate(rate: Union[Decimal, str, float], mode: Union[InterestMode, str]) -> Decimal:
    """Annual equivalent of a daily or monthly rate"""
    mode = InterestMode(mode) if not isinstance(mode, InterestMode) else mode
    rate = to_decimal(rate)
    if mode == InterestMode.DAILY:
        return rate * DAYS_PER_YEAR
    return rate * MONTHS_PER_YEAR


def check_interest_rate_legality(
    rate: Union[Decimal, str, float],
    mode: Union[InterestMode, str],
    limit: Optional[Decimal] = None
) -> LegalityCheck:
    """
    Advisory check against the Thai usury ceiling (15% per year).

    Not enforced by the calculator; callers run it before saving a policy.
    """
    if limit is None:
        limit = to_decimal(get_config().legal_annual_rate_limit)
    annual_rate = annualize_rate(rate, mode)
    annual_pct = (annual_rate * 100).quantize(Decimal('0.01'))
    limit_pct = (limit * 100).quantize(Decimal('0.01'))

    if annual_rate > limit:
        return LegalityCheck(
            is_legal=False,
            annual_rate=annual_rate,
            limit=limit,
            message=f"Annual rate {annual_pct}% exceeds the legal limit of {limit_pct}% per year"
        )
    return LegalityCheck(
        is_legal=True,
        annual_rate=annual_rate,
        limit=limit,
        message=f"Annual rate {annual_pct}% is within the legal limit of {limit_pct}% per year"
    )


class InterestPolicyManager:
    """
    Stores interest policies and guards them once loans reference them
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

        self.policies_table = "interest_policies"
        self.loans_table = "loans"

    def create_policy(
        self,
        workspace_id: str,
        name: str,
        mode: Union[InterestMode, str],
        monthly_rate: Optional[Decimal] = None,
        daily_rate: Optional[Decimal] = None,
        anchor_day: int = 1,
        grace_days: int = 0
    ) -> InterestPolicy:
        """
        Create an interest policy

        The usury check is advisory: an illegal rate is logged, not refused.
        """
        now = datetime.now(timezone.utc)
        policy = InterestPolicy(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            name=name,
            mode=mode,
            monthly_rate=monthly_rate,
            daily_rate=daily_rate,
            anchor_day=anchor_day,
            grace_days=grace_days
        )

        legality = check_interest_rate_legality(policy.rate, policy.mode)
        if not legality.is_legal:
            log_action(logger, "warning", legality.message, action="create_policy",
                       resource=policy.id, workspace_id=workspace_id)

        self._save_policy(policy)

        self.audit_trail.log_event(
            event_type=AuditEventType.POLICY_CREATED,
            entity_type="interest_policy",
            entity_id=policy.id,
            workspace_id=workspace_id,
            metadata={
                "name": name,
                "mode": policy.mode.value,
                "rate": policy.rate,
                "anchor_day": anchor_day,
                "is_legal": legality.is_legal
            }
        )
        return policy

    def get_policy(self, policy_id: str) -> InterestPolicy:
        data = self.storage.load(self.policies_table, policy_id)
        if not data:
            raise NotFoundError("Interest policy", policy_id)
        return self._policy_from_dict(data)

    def find_policy(self, policy_id: Optional[str]) -> Optional[InterestPolicy]:
        """Policy by id, or None when unset or missing"""
        if not policy_id:
            return None
        data = self.storage.load(self.policies_table, policy_id)
        return self._policy_from_dict(data) if data else None

    def get_workspace_policies(self, workspace_id: str) -> List[InterestPolicy]:
        rows = self.storage.find(self.policies_table, {"workspace_id": workspace_id})
        policies = [self._policy_from_dict(row) for row in rows]
        policies.sort(key=lambda p: p.created_at)
        return policies

    def count_referencing_loans(self, policy_id: str) -> int:
        return len(self.storage.find(self.loans_table, {"interest_policy_id": policy_id}))

    def update_policy(self, policy_id: str, **changes) -> InterestPolicy:
        """
        Update a policy

        Rate-affecting fields (mode, rates, anchor day) are frozen once any
        loan references the policy; name and grace days stay editable.
        """
        rate_fields = {"mode", "monthly_rate", "daily_rate", "anchor_day"}
        allowed = rate_fields | {"name", "grace_days"}
        unknown = set(changes) - allowed
        if unknown:
            raise LedgerValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            policy = self.get_policy(policy_id)
            if rate_fields & set(changes) and self.count_referencing_loans(policy_id):
                raise PolicyInUseError("Interest policy is referenced by loans; rates cannot change")

            data = self._policy_to_dict(policy)
            data.update({k: (str(v) if isinstance(v, Decimal) else v) for k, v in changes.items()
                         if k != "mode"})
            if "mode" in changes:
                mode = changes["mode"]
                data["mode"] = mode.value if isinstance(mode, InterestMode) else mode
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            updated = self._policy_from_dict(data)
            self._save_policy(updated)

            self.audit_trail.log_event(
                event_type=AuditEventType.POLICY_UPDATED,
                entity_type="interest_policy",
                entity_id=policy_id,
                workspace_id=policy.workspace_id,
                metadata={"changes": {k: str(v) for k, v in changes.items()}}
            )
        return updated

    def delete_policy(self, policy_id: str) -> None:
        """Delete a policy no loan references"""
        with self.storage.atomic():
            policy = self.get_policy(policy_id)
            in_use = self.count_referencing_loans(policy_id)
            if in_use:
                raise PolicyInUseError(f"Interest policy is used by {in_use} loan(s) and cannot be deleted")

            self.storage.delete(self.policies_table, policy_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.POLICY_DELETED,
                entity_type="interest_policy",
                entity_id=policy_id,
                workspace_id=policy.workspace_id,
                metadata={"name": policy.name}
            )
        log_action(logger, "info", "Interest policy deleted", action="delete_policy",
                   resource=policy_id, workspace_id=policy.workspace_id)

    def _save_policy(self, policy: InterestPolicy) -> None:
        self.storage.save(self.policies_table, policy.id, self._policy_to_dict(policy))

    def _policy_to_dict(self, policy: InterestPolicy) -> Dict:
        return policy.to_dict()

    def _policy_from_dict(self, data: Dict) -> InterestPolicy:
        return InterestPolicy(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            name=data['name'],
            mode=InterestMode(data['mode']),
            monthly_rate=Decimal(data['monthly_rate']) if data.get('monthly_rate') is not None else None,
            daily_rate=Decimal(data['daily_rate']) if data.get('daily_rate') is not None else None,
            anchor_day=int(data.get('anchor_day') or 1),
            grace_days=int(data.get('grace_days') or 0)
        )
