"""
Credit card endpoints
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error, ensure_workspace, REQUEST_ERRORS
from .schemas import (
    CreateCardRequest, CardTransactionRequest, GenerateStatementRequest,
    StatementPaymentRequest, serialize
)


router = APIRouter()


def _load_card(system: LedgerSystem, workspace_id: str, card_id: str):
    card = system.credit_card_manager.get_card(card_id)
    ensure_workspace(card.workspace_id, workspace_id, "Credit card", card_id)
    return card


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_card(
    workspace_id: str,
    request: CreateCardRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        card = system.credit_card_manager.create_card(
            workspace_id=workspace_id,
            name=request.name,
            credit_limit=request.credit_limit.to_money(),
            statement_cut_day=request.statement_cut_day,
            payment_due_days=request.payment_due_days,
            interest_rate=Decimal(request.interest_rate),
            min_payment_percent=Decimal(request.min_payment_percent) if request.min_payment_percent else None,
            min_payment_fixed=request.min_payment_fixed.to_money() if request.min_payment_fixed else None,
            last_four=request.last_four
        )
        return serialize(card)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("")
async def list_cards(workspace_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    cards = system.credit_card_manager.get_workspace_cards(workspace_id)
    return {"cards": [serialize(card) for card in cards]}


@router.get("/{card_id}")
async def get_card_summary(workspace_id: str, card_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Card with recent statements and unpaid total"""
    try:
        _load_card(system, workspace_id, card_id)
        return serialize(system.credit_card_manager.get_card_summary(card_id))
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{card_id}/transactions")
async def add_transaction(
    workspace_id: str,
    card_id: str,
    request: CardTransactionRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Charge a purchase against the card"""
    try:
        _load_card(system, workspace_id, card_id)
        result = system.credit_card_manager.add_transaction(
            card_id, request.amount.to_money(), request.description
        )
        return serialize(result)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{card_id}/statements", status_code=status.HTTP_201_CREATED)
async def generate_statement(
    workspace_id: str,
    card_id: str,
    request: GenerateStatementRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Close the billing period at the card's cut date"""
    try:
        _load_card(system, workspace_id, card_id)
        statement = system.credit_card_manager.generate_statement(card_id, request.statement_date)
        return serialize(statement)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.get("/{card_id}/statements")
async def list_statements(
    workspace_id: str,
    card_id: str,
    limit: Optional[int] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_card(system, workspace_id, card_id)
        statements = system.credit_card_manager.get_statements(card_id, limit)
        return {"statements": [serialize(s) for s in statements]}
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)


@router.post("/{card_id}/statements/{statement_id}/payments", status_code=status.HTTP_201_CREATED)
async def pay_statement(
    workspace_id: str,
    card_id: str,
    statement_id: str,
    request: StatementPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        _load_card(system, workspace_id, card_id)
        statement = system.credit_card_manager.get_statement(statement_id)
        ensure_workspace(statement.credit_card_id, card_id, "Statement", statement_id)

        payment = system.credit_card_manager.pay_statement(
            statement_id, request.amount.to_money(), request.payment_date, request.note
        )
        return serialize(payment)
    except REQUEST_ERRORS as e:
        raise http_error(e, workspace_id)
