"""
Router FastAPI per la consultazione dei pagamenti
Progetto: Clinic Ledger (Gestionale Clinica)
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import Context
from app.schemas.invoice import PaymentFilter, PaymentMethod, PaymentRead
from app.services.payment_service import payment_service

router = APIRouter(prefix="/payments", tags=["Pagamenti"])


@router.get("/", response_model=List[PaymentRead])
async def get_payments(
    ctx: Context,
    invoice_id: Optional[uuid.UUID] = Query(None),
    received_by: Optional[uuid.UUID] = Query(None),
    method: Optional[PaymentMethod] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Ricerca pagamenti per fattura, operatore, metodo o periodo."""
    filters = PaymentFilter(
        invoice_id=invoice_id,
        received_by=received_by,
        method=method,
        from_date=from_date,
        to_date=to_date,
    )
    return await payment_service.get_all(db, ctx, filters, skip=skip, limit=limit)
