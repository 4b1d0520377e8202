"""
Installment plan endpoints
"""

from decimal import Decimal
from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreatePlanRequest, InstallmentPaymentRequest, serialize


router = APIRouter()


def _load_installment(system: LedgerSystem, workspace_id: str, installment_id: str):
    installment = system.installment_manager.get_installment(installment_id)
    plan = system.installment_manager.get_plan(installment.plan_id)
    ensure_workspace(plan.workspace_id, workspace_id, "Installment", installment_id)
    return installment


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_plan(
    workspace_id: str,
    request: CreatePlanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a plan and its monthly terms"""
    try:
        plan = system.installment_manager.create_plan(
            workspace_id=workspace_id,
            contact_id=request.contact_id,
            item_name=request.item_name,
            total_amount=request.total_amount.to_money(),
            number_of_terms=request.number_of_terms,
            start_date=request.start_date,
            down_payment=request.down_payment.to_money() if request.down_payment else None,
            interest_rate=Decimal(request.interest_rate),
            item_description=request.item_description
        )
        return serialize(system.installment_manager.get_plan_summary(plan.id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_plans(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    plans = system.installment_manager.get_workspace_plans(workspace_id)
    return {"plans": [serialize(plan) for plan in plans]}


@router.post("/mark-overdue")
async def mark_overdue(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Flag unpaid terms past their due date"""
    return {"marked": system.installment_manager.update_overdue_installments(workspace_id)}


@router.get("/{plan_id}")
async def get_plan_summary(workspace_id: str, plan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        plan = system.installment_manager.get_plan(plan_id)
        ensure_workspace(plan.workspace_id, workspace_id, "Installment plan", plan_id)
        return serialize(system.installment_manager.get_plan_summary(plan_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/installments/{installment_id}/pay")
async def pay_installment(
    workspace_id: str,
    installment_id: str,
    request: InstallmentPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_installment(system, workspace_id, installment_id)
        installment = system.installment_manager.pay_installment(
            installment_id, request.amount.to_money(), request.payment_date, request.slip_url
        )
        return serialize(installment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.put("/installments/{installment_id}")
async def update_installment(
    workspace_id: str,
    installment_id: str,
    request: InstallmentPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Replace the paid amount of a term"""
    try:
        _load_installment(system, workspace_id, installment_id)
        installment = system.installment_manager.update_installment(
            installment_id, request.amount.to_money(), request.payment_date, request.slip_url
        )
        return serialize(installment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
