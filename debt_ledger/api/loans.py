"""
Loan endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreateLoanRequest, UpdateLoanRequest, ExtendDueDateRequest, serialize
from ..loans import LoanStatus, LoanType


router = APIRouter()


def _load_loan(system: LedgerSystem, workspace_id: str, loan_id: str):
    loan = system.loan_manager.get_loan(loan_id)
    ensure_workspace(loan.workspace_id, workspace_id, "Loan", loan_id)
    return loan


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    workspace_id: str,
    request: CreateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Originate a loan"""
    try:
        loan = system.loan_manager.create_loan(
            workspace_id=workspace_id,
            borrower_id=request.borrower_id,
            principal=request.principal.to_money(),
            start_date=request.start_date,
            due_date=request.due_date,
            loan_type=LoanType(request.loan_type),
            interest_policy_id=request.interest_policy_id,
            lender_id=request.lender_id,
            note=request.note
        )
        return serialize(loan)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_loans(
    workspace_id: str,
    status: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        loans = system.loan_manager.get_workspace_loans(
            workspace_id, LoanStatus(status) if status else None
        )
        return {"loans": [serialize(loan) for loan in loans]}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/mark-overdue")
async def mark_overdue(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Flag OPEN loans past their due date"""
    return {"marked": system.loan_manager.mark_overdue_loans(workspace_id)}


@router.post("/refresh-interest")
async def refresh_interest(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Recompute accrued interest on every active loan"""
    return {"refreshed": system.loan_manager.refresh_workspace_interest(workspace_id)}


@router.get("/{loan_id}")
async def get_loan(workspace_id: str, loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        return serialize(_load_loan(system, workspace_id, loan_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.patch("/{loan_id}")
async def update_loan(
    workspace_id: str,
    loan_id: str,
    request: UpdateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_loan(system, workspace_id, loan_id)
        loan = system.loan_manager.update_loan(
            loan_id,
            due_date=request.due_date,
            note=request.note,
            interest_policy_id=request.interest_policy_id
        )
        return serialize(loan)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{loan_id}/extend")
async def extend_due_date(
    workspace_id: str,
    loan_id: str,
    request: ExtendDueDateRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_loan(system, workspace_id, loan_id)
        return serialize(system.loan_manager.extend_due_date(loan_id, request.new_due_date))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{loan_id}/refresh-interest")
async def refresh_loan_interest(workspace_id: str, loan_id: str,
                                system: LedgerSystem = Depends(get_ledger_system)):
    try:
        _load_loan(system, workspace_id, loan_id)
        return serialize(system.loan_manager.refresh_accrued_interest(loan_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{loan_id}/interest")
async def get_loan_interest(
    workspace_id: str,
    loan_id: str,
    to_date: Optional[date] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Interest recomputed from origination with its period breakdown"""
    try:
        _load_loan(system, workspace_id, loan_id)
        result = system.loan_manager.reconcile_interest(loan_id, to_date)
        return {
            "total_interest": str(result.total_interest),
            "breakdown": [entry.to_dict() for entry in result.breakdown]
        }
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{loan_id}/summary")
async def get_loan_summary(workspace_id: str, loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        _load_loan(system, workspace_id, loan_id)
        return serialize(system.loan_manager.get_loan_payment_summary(loan_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
