"""
Ledger system container and shared route dependencies
"""

import logging
from decimal import InvalidOperation
from typing import Optional, Union

from fastapi import HTTPException

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..clock import Clock, get_clock
from ..interest import InterestPolicyManager
from ..loans import LoanManager
from ..payments import PaymentManager
from ..credit_cards import CreditCardManager
from ..installments import InstallmentManager
from ..customer_credit import CustomerCreditManager
from ..applications import LoanApplicationManager
from ..collections import CollectionManager
from ..config import get_config
from ..exceptions import LedgerError, NotFoundError
from ..logging_config import log_action


logger = logging.getLogger("debt_ledger.api")

# Rejections a route turns into 4xx responses; LedgerError is a ValueError
REQUEST_ERRORS = (ValueError, InvalidOperation)


class LedgerSystem:
    """Debt ledger with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, clock: Optional[Clock] = None):
        config = get_config()
        self.storage = storage or create_storage(config.storage_backend, config.sqlite_path)
        self.clock = clock or get_clock()

        self.audit_trail = AuditTrail(self.storage, enabled=config.enable_audit_logging)
        self.policy_manager = InterestPolicyManager(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(self.storage, self.policy_manager, self.audit_trail, self.clock)
        self.payment_manager = PaymentManager(self.storage, self.loan_manager, self.audit_trail, self.clock)
        self.credit_card_manager = CreditCardManager(self.storage, self.audit_trail, self.clock)
        self.installment_manager = InstallmentManager(self.storage, self.audit_trail, self.clock)
        self.credit_manager = CustomerCreditManager(
            self.storage, self.loan_manager, self.audit_trail, self.clock
        )
        self.application_manager = LoanApplicationManager(
            self.storage, self.loan_manager, self.credit_manager, self.audit_trail
        )
        self.collection_manager = CollectionManager(
            self.storage, self.loan_manager, self.audit_trail, self.clock
        )


_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Process-wide ledger system, created on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def http_error(exc: Union[LedgerError, ValueError, InvalidOperation],
               workspace_id: Optional[str] = None) -> HTTPException:
    """Log a rejected request and map it to an HTTP error"""
    status_code = 404 if isinstance(exc, NotFoundError) else 400
    log_action(logger, "warning", str(exc), action="request_rejected", workspace_id=workspace_id,
               extra={"error": type(exc).__name__, "status_code": status_code})
    return HTTPException(status_code=status_code, detail=str(exc))


def ensure_workspace(owner_workspace_id: str, workspace_id: str, entity_type: str, entity_id: str) -> None:
    """Entities of another workspace are reported as missing"""
    if owner_workspace_id != workspace_id:
        raise NotFoundError(entity_type, entity_id)
