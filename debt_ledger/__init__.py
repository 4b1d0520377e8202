"""
Debt Ledger

Multi-tenant debt and loan ledger: interest accrual under Thai usury limits,
payment allocation across loans, credit-card statements and installment
plans. All financial math uses Decimal and every state change is audited.
"""

__version__ = "1.0.0"
