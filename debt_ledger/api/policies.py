"""
Interest policy endpoints
"""

from decimal import Decimal
from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import CreatePolicyRequest, UpdatePolicyRequest, LegalityRequest, serialize
from ..interest import check_interest_rate_legality


router = APIRouter()


def _policy_response(policy) -> dict:
    data = serialize(policy)
    data["legality"] = serialize(check_interest_rate_legality(policy.rate, policy.mode))
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_policy(
    workspace_id: str,
    request: CreatePolicyRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create an interest policy; the response carries the usury advisory"""
    try:
        policy = system.policy_manager.create_policy(
            workspace_id=workspace_id,
            name=request.name,
            mode=request.mode,
            monthly_rate=Decimal(request.monthly_rate) if request.monthly_rate else None,
            daily_rate=Decimal(request.daily_rate) if request.daily_rate else None,
            anchor_day=request.anchor_day,
            grace_days=request.grace_days
        )
        return _policy_response(policy)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_policies(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    policies = system.policy_manager.get_workspace_policies(workspace_id)
    return {"policies": [serialize(p) for p in policies]}


@router.post("/check-legality")
async def check_legality(workspace_id: str, request: LegalityRequest):
    """Usury advisory for a rate without saving anything"""
    try:
        return serialize(check_interest_rate_legality(Decimal(request.rate), request.mode))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{policy_id}")
async def get_policy(workspace_id: str, policy_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    try:
        policy = system.policy_manager.get_policy(policy_id)
        ensure_workspace(policy.workspace_id, workspace_id, "Interest policy", policy_id)
        return _policy_response(policy)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.patch("/{policy_id}")
async def update_policy(
    workspace_id: str,
    policy_id: str,
    request: UpdatePolicyRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        policy = system.policy_manager.get_policy(policy_id)
        ensure_workspace(policy.workspace_id, workspace_id, "Interest policy", policy_id)

        changes = request.model_dump(exclude_none=True)
        for rate_field in ("monthly_rate", "daily_rate"):
            if rate_field in changes:
                changes[rate_field] = Decimal(changes[rate_field])
        policy = system.policy_manager.update_policy(policy_id, **changes)
        return _policy_response(policy)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.delete("/{policy_id}")
async def delete_policy(workspace_id: str, policy_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Delete a policy no loan uses"""
    try:
        policy = system.policy_manager.get_policy(policy_id)
        ensure_workspace(policy.workspace_id, workspace_id, "Interest policy", policy_id)
        system.policy_manager.delete_policy(policy_id)
        return {"message": "Interest policy deleted"}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
