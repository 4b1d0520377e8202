"""
Payment endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreatePaymentRequest, AutoAllocatePaymentRequest, UpdatePaymentRequest, serialize


router = APIRouter()


def _load_payment(system: LedgerSystem, workspace_id: str, payment_id: str):
    payment = system.payment_manager.get_payment(payment_id)
    ensure_workspace(payment.workspace_id, workspace_id, "Payment", payment_id)
    return payment


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment(
    workspace_id: str,
    request: CreatePaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a payment with explicit allocations"""
    try:
        amount = request.amount.to_money()
        payment = system.payment_manager.create_payment(
            workspace_id=workspace_id,
            amount=amount,
            payment_date=request.payment_date,
            allocations=[a.to_item(amount.currency) for a in request.allocations],
            note=request.note,
            attachment_url=request.attachment_url
        )
        return serialize(payment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/auto", status_code=status.HTTP_201_CREATED)
async def auto_allocate_payment(
    workspace_id: str,
    request: AutoAllocatePaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a payment split over open loans by an allocation method"""
    try:
        payment = system.payment_manager.auto_allocate_payment(
            workspace_id=workspace_id,
            amount=request.amount.to_money(),
            payment_date=request.payment_date,
            method=request.method,
            borrower_id=request.borrower_id,
            note=request.note,
            attachment_url=request.attachment_url
        )
        return serialize(payment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_payments(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    payments = system.payment_manager.get_workspace_payments(workspace_id)
    return {"payments": [serialize(p) for p in payments]}


@router.get("/{payment_id}")
async def get_payment(workspace_id: str, payment_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        return serialize(_load_payment(system, workspace_id, payment_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.patch("/{payment_id}")
async def update_payment(
    workspace_id: str,
    payment_id: str,
    request: UpdatePaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_payment(system, workspace_id, payment_id)
        payment = system.payment_manager.update_payment(
            payment_id,
            note=request.note,
            payment_date=request.payment_date,
            attachment_url=request.attachment_url
        )
        return serialize(payment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.delete("/{payment_id}")
async def delete_payment(workspace_id: str, payment_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Delete a payment and reverse its allocations"""
    try:
        _load_payment(system, workspace_id, payment_id)
        system.payment_manager.delete_payment(payment_id)
        return {"message": "Payment deleted and allocations reversed"}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
