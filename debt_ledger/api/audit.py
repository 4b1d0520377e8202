"""
Audit trail endpoints
"""

from fastapi import APIRouter, Depends

from .deps import LedgerSystem, get_ledger_system


router = APIRouter()


@router.get("/verify")
async def verify_audit_chain(system: LedgerSystem = Depends(get_ledger_system)):
    """Check every event hash and the links between them"""
    return system.audit_trail.verify_integrity()


@router.get("/{entity_type}/{entity_id}")
async def get_entity_events(entity_type: str, entity_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    events = system.audit_trail.get_events_for_entity(entity_type, entity_id)
    return {
        "events": [
            {
                "id": event.id,
                "event_type": event.event_type.value,
                "timestamp": event.created_at.isoformat(),
                "workspace_id": event.workspace_id,
                "metadata": event.metadata
            }
            for event in events
        ]
    }
