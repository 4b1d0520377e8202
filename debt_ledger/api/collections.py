"""
Collection case endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreateCaseRequest, LogActivityRequest, CaseStatusRequest, serialize
from ..collections import ActivityType, CollectionPriority, CollectionStatus


router = APIRouter()


def _load_case(system: LedgerSystem, workspace_id: str, case_id: str):
    case = system.collection_manager.get_case(case_id)
    ensure_workspace(case.workspace_id, workspace_id, "Collection case", case_id)
    return case


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_case(
    workspace_id: str,
    request: CreateCaseRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        case = system.collection_manager.create_case(
            workspace_id=workspace_id,
            loan_id=request.loan_id,
            total_outstanding=request.total_outstanding.to_money(),
            principal_due=request.principal_due.to_money(),
            interest_due=request.interest_due.to_money(),
            days_past_due=request.days_past_due,
            contact_id=request.contact_id,
            assigned_to=request.assigned_to,
            priority=CollectionPriority(request.priority) if request.priority else None
        )
        return serialize(case)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_pending_cases(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Open cases, most days past due first"""
    cases = system.collection_manager.get_pending_cases(workspace_id)
    return {"cases": [serialize(case) for case in cases]}


@router.get("/stats")
async def get_collection_stats(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    return serialize(system.collection_manager.get_collection_stats(workspace_id))


@router.post("/auto-create")
async def auto_create_cases(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Open a case for every overdue loan that has none"""
    try:
        cases = system.collection_manager.auto_create_collection_cases(workspace_id)
        return {"created": len(cases), "cases": [serialize(case) for case in cases]}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{case_id}")
async def get_case(workspace_id: str, case_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        case = _load_case(system, workspace_id, case_id)
        activities = system.collection_manager.get_case_activities(case_id)
        return {"case": serialize(case), "activities": [serialize(a) for a in activities]}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{case_id}/activities", status_code=status.HTTP_201_CREATED)
async def log_activity(
    workspace_id: str,
    case_id: str,
    request: LogActivityRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_case(system, workspace_id, case_id)
        activity = system.collection_manager.log_activity(
            case_id,
            ActivityType(request.activity_type),
            request.description,
            created_by=request.created_by,
            promised_amount=request.promised_amount.to_money() if request.promised_amount else None,
            promised_date=request.promised_date,
            outcome=request.outcome
        )
        return serialize(activity)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.put("/{case_id}/status")
async def update_case_status(
    workspace_id: str,
    case_id: str,
    request: CaseStatusRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_case(system, workspace_id, case_id)
        case = system.collection_manager.update_case_status(case_id, CollectionStatus(request.status))
        return serialize(case)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
