"""
Debt Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .deps import LedgerSystem, get_ledger_system
from .policies import router as policies_router
from .loans import router as loans_router
from .payments import router as payments_router
from .credit_cards import router as credit_cards_router
from .installments import router as installments_router
from .customer_credits import router as customer_credits_router
from .applications import router as applications_router
from .collections import router as collections_router
from .audit import router as audit_router


WORKSPACE_PREFIX = "/workspaces/{workspace_id}"


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Debt Ledger API",
        description="Multi-tenant lending and debt tracking ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(policies_router, prefix=f"{WORKSPACE_PREFIX}/interest-policies", tags=["Interest Policies"])
    app.include_router(loans_router, prefix=f"{WORKSPACE_PREFIX}/loans", tags=["Loans"])
    app.include_router(payments_router, prefix=f"{WORKSPACE_PREFIX}/payments", tags=["Payments"])
    app.include_router(credit_cards_router, prefix=f"{WORKSPACE_PREFIX}/credit-cards", tags=["Credit Cards"])
    app.include_router(installments_router, prefix=f"{WORKSPACE_PREFIX}/installment-plans", tags=["Installments"])
    app.include_router(customer_credits_router, prefix=f"{WORKSPACE_PREFIX}/credits", tags=["Customer Credit"])
    app.include_router(applications_router, prefix=f"{WORKSPACE_PREFIX}/applications", tags=["Applications"])
    app.include_router(collections_router, prefix=f"{WORKSPACE_PREFIX}/collections", tags=["Collections"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "debt_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Debt Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "interest-policies": f"{WORKSPACE_PREFIX}/interest-policies",
                "loans": f"{WORKSPACE_PREFIX}/loans",
                "payments": f"{WORKSPACE_PREFIX}/payments",
                "credit-cards": f"{WORKSPACE_PREFIX}/credit-cards",
                "installment-plans": f"{WORKSPACE_PREFIX}/installment-plans",
                "credits": f"{WORKSPACE_PREFIX}/credits",
                "applications": f"{WORKSPACE_PREFIX}/applications",
                "collections": f"{WORKSPACE_PREFIX}/collections",
                "audit": "/audit",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "debt_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


__all__ = ["app", "create_app", "run_server", "LedgerSystem", "get_ledger_system"]
