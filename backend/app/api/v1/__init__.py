"""
API v1 Routes
Progetto: Clinic Ledger (Gestionale Clinica)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import cash_sessions, commissions, invoices, payments

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(payments.router)
api_v1_router.include_router(cash_sessions.router)
api_v1_router.include_router(commissions.router)
api_v1_router.include_router(commissions.practitioners_router)

# Esportazione
__all__ = ["api_v1_router"]
