"""
Loan application endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreateApplicationRequest, ApplicationStatusRequest, DisburseRequest, serialize
from ..applications import ApplicationStatus


router = APIRouter()


def _load_application(system: LedgerSystem, workspace_id: str, application_id: str):
    application = system.application_manager.get_application(application_id)
    ensure_workspace(application.workspace_id, workspace_id, "Loan application", application_id)
    return application


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_application(
    workspace_id: str,
    request: CreateApplicationRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        application = system.application_manager.create_application(
            workspace_id=workspace_id,
            contact_id=request.contact_id,
            requested_amount=request.requested_amount.to_money(),
            purpose=request.purpose,
            term_months=request.term_months,
            interest_policy_id=request.interest_policy_id
        )
        return serialize(application)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_applications(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    applications = system.application_manager.get_workspace_applications(workspace_id)
    return {"applications": [serialize(a) for a in applications]}


@router.get("/pending")
async def list_pending_applications(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Applications still waiting for a decision"""
    applications = system.application_manager.get_pending_applications(workspace_id)
    return {"applications": [serialize(a) for a in applications]}


@router.get("/stats")
async def get_application_stats(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    return serialize(system.application_manager.get_application_stats(workspace_id))


@router.get("/{application_id}")
async def get_application(workspace_id: str, application_id: str,
                          system: LedgerSystem = Depends(get_ledger_system)):
    try:
        return serialize(_load_application(system, workspace_id, application_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.put("/{application_id}/status")
async def update_application_status(
    workspace_id: str,
    application_id: str,
    request: ApplicationStatusRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_application(system, workspace_id, application_id)
        application = system.application_manager.update_status(
            application_id,
            ApplicationStatus(request.status),
            request.reviewed_by,
            approved_amount=request.approved_amount.to_money() if request.approved_amount else None,
            note=request.note
        )
        return serialize(application)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{application_id}/disburse", status_code=status.HTTP_201_CREATED)
async def approve_and_disburse(
    workspace_id: str,
    application_id: str,
    request: DisburseRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Approve the application and originate its loan"""
    try:
        _load_application(system, workspace_id, application_id)
        loan = system.application_manager.approve_and_disburse(
            application_id,
            reviewed_by=request.reviewed_by,
            approved_amount=request.approved_amount.to_money(),
            start_date=request.start_date,
            due_date=request.due_date,
            lender_id=request.lender_id,
            note=request.note,
            use_customer_credit=request.use_customer_credit
        )
        return serialize(loan)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
