"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date
from dataclasses import is_dataclass, fields
from typing import Any, List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..storage import to_storage_value
from ..allocation import AllocationItem


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field("THB", description="Currency code (THB, USD, ...)")

    def to_money(self) -> Money:
        if self.currency not in Currency.__members__:
            raise ValueError(f"Unsupported currency: {self.currency}")
        return Money(Decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def serialize(value: Any) -> Any:
    """JSON-ready form of records, Money and containers"""
    if isinstance(value, Money):
        return MoneyModel.from_money(value).model_dump()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    return to_storage_value(value)


# Interest policy schemas
class CreatePolicyRequest(BaseModel):
    name: str
    mode: str = Field(..., description="DAILY or MONTHLY")
    monthly_rate: Optional[str] = None  # Decimal as string
    daily_rate: Optional[str] = None
    anchor_day: int = 1
    grace_days: int = 0


class UpdatePolicyRequest(BaseModel):
    name: Optional[str] = None
    mode: Optional[str] = None
    monthly_rate: Optional[str] = None
    daily_rate: Optional[str] = None
    anchor_day: Optional[int] = None
    grace_days: Optional[int] = None


class LegalityRequest(BaseModel):
    rate: str
    mode: str


# Loan schemas
class CreateLoanRequest(BaseModel):
    borrower_id: str
    principal: MoneyModel
    start_date: date
    due_date: Optional[date] = None
    loan_type: str = "RECEIVABLE"
    interest_policy_id: Optional[str] = None
    lender_id: Optional[str] = None
    note: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    due_date: Optional[date] = None
    note: Optional[str] = None
    interest_policy_id: Optional[str] = None


class ExtendDueDateRequest(BaseModel):
    new_due_date: date


# Payment schemas
class AllocationModel(BaseModel):
    loan_id: str
    principal_paid: str = "0"
    interest_paid: str = "0"

    def to_item(self, currency: Currency) -> AllocationItem:
        return AllocationItem(
            loan_id=self.loan_id,
            principal_paid=Money(Decimal(self.principal_paid), currency),
            interest_paid=Money(Decimal(self.interest_paid), currency)
        )


class CreatePaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: date
    allocations: List[AllocationModel] = Field(default_factory=list)
    note: Optional[str] = None
    attachment_url: Optional[str] = None


class AutoAllocatePaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: date
    method: Optional[str] = Field(None, description="INTEREST_FIRST, PRINCIPAL_FIRST or FIFO")
    borrower_id: Optional[str] = None
    note: Optional[str] = None
    attachment_url: Optional[str] = None


class UpdatePaymentRequest(BaseModel):
    note: Optional[str] = None
    payment_date: Optional[date] = None
    attachment_url: Optional[str] = None


# Credit card schemas
class CreateCardRequest(BaseModel):
    name: str
    credit_limit: MoneyModel
    statement_cut_day: int
    payment_due_days: int
    interest_rate: str
    min_payment_percent: Optional[str] = None
    min_payment_fixed: Optional[MoneyModel] = None
    last_four: Optional[str] = None


class CardTransactionRequest(BaseModel):
    amount: MoneyModel
    description: Optional[str] = None


class GenerateStatementRequest(BaseModel):
    statement_date: Optional[date] = None


class StatementPaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: Optional[date] = None
    note: Optional[str] = None


# Installment schemas
class CreatePlanRequest(BaseModel):
    contact_id: str
    item_name: str
    total_amount: MoneyModel
    number_of_terms: int
    start_date: date
    down_payment: Optional[MoneyModel] = None
    interest_rate: str = "0"  # percent per year
    item_description: Optional[str] = None


class InstallmentPaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: Optional[date] = None
    slip_url: Optional[str] = None


# Customer credit schemas
class CreateCreditRequest(BaseModel):
    contact_id: str
    credit_limit: MoneyModel
    risk_level: Optional[str] = None
    note: Optional[str] = None


class UpdateLimitRequest(BaseModel):
    new_limit: MoneyModel
    reason: str
    changed_by: Optional[str] = None


class CreditMovementRequest(BaseModel):
    amount: MoneyModel
    reference: Optional[str] = None


# Loan application schemas
class CreateApplicationRequest(BaseModel):
    contact_id: str
    requested_amount: MoneyModel
    purpose: Optional[str] = None
    term_months: Optional[int] = None
    interest_policy_id: Optional[str] = None


class ApplicationStatusRequest(BaseModel):
    status: str
    reviewed_by: str
    approved_amount: Optional[MoneyModel] = None
    note: Optional[str] = None


class DisburseRequest(BaseModel):
    reviewed_by: str
    approved_amount: MoneyModel
    start_date: date
    due_date: Optional[date] = None
    lender_id: Optional[str] = None
    note: Optional[str] = None
    use_customer_credit: bool = False


# Collection schemas
class CreateCaseRequest(BaseModel):
    loan_id: str
    total_outstanding: MoneyModel
    principal_due: MoneyModel
    interest_due: MoneyModel
    days_past_due: int
    contact_id: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[str] = None


class LogActivityRequest(BaseModel):
    activity_type: str
    description: str
    created_by: Optional[str] = None
    promised_amount: Optional[MoneyModel] = None
    promised_date: Optional[date] = None
    outcome: Optional[str] = None


class CaseStatusRequest(BaseModel):
    status: str
