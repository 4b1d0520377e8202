"""
Customer credit line endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreateCreditRequest, UpdateLimitRequest, CreditMovementRequest, serialize
from ..customer_credit import RiskLevel


router = APIRouter()


def _load_credit(system: LedgerSystem, workspace_id: str, credit_id: str):
    credit = system.credit_manager.get_credit(credit_id)
    ensure_workspace(credit.workspace_id, workspace_id, "Customer credit", credit_id)
    return credit


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_credit(
    workspace_id: str,
    request: CreateCreditRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        credit = system.credit_manager.create_credit(
            workspace_id=workspace_id,
            contact_id=request.contact_id,
            credit_limit=request.credit_limit.to_money(),
            risk_level=RiskLevel(request.risk_level) if request.risk_level else None,
            note=request.note
        )
        return serialize(credit)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_credits(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    credits = system.credit_manager.get_workspace_credits(workspace_id)
    return {"credits": [serialize(credit) for credit in credits]}


@router.get("/stats")
async def get_credit_stats(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    return serialize(system.credit_manager.get_credit_stats(workspace_id))


@router.get("/{credit_id}")
async def get_credit(workspace_id: str, credit_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        return serialize(_load_credit(system, workspace_id, credit_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.put("/{credit_id}/limit")
async def update_credit_limit(
    workspace_id: str,
    credit_id: str,
    request: UpdateLimitRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_credit(system, workspace_id, credit_id)
        credit = system.credit_manager.update_credit_limit(
            credit_id, request.new_limit.to_money(), request.reason, request.changed_by
        )
        return serialize(credit)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{credit_id}/apply")
async def apply_credit(
    workspace_id: str,
    credit_id: str,
    request: CreditMovementRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Draw on the credit line"""
    try:
        _load_credit(system, workspace_id, credit_id)
        credit = system.credit_manager.apply_credit(credit_id, request.amount.to_money(), request.reference)
        return serialize(credit)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{credit_id}/restore")
async def restore_credit(
    workspace_id: str,
    credit_id: str,
    request: CreditMovementRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Give back credit after a repayment"""
    try:
        _load_credit(system, workspace_id, credit_id)
        credit = system.credit_manager.restore_credit(credit_id, request.amount.to_money(), request.reference)
        return serialize(credit)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{credit_id}/assess-risk")
async def assess_risk(workspace_id: str, credit_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        _load_credit(system, workspace_id, credit_id)
        level = system.credit_manager.assess_risk_level(credit_id)
        return {"credit_id": credit_id, "risk_level": level.value}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{credit_id}/history")
async def get_credit_history(workspace_id: str, credit_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        _load_credit(system, workspace_id, credit_id)
        history = system.credit_manager.get_credit_history(credit_id)
        return {"history": [serialize(entry) for entry in history]}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
