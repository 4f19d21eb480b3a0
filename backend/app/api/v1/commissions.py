"""
Router FastAPI per Intervenienti e Provvigioni
Progetto: Clinic Ledger (Gestionale Clinica)
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import Context
from app.schemas.commission import (
    PERIOD_PATTERN,
    CommissionBatch,
    CommissionCalculate,
    CommissionFilter,
    CommissionRead,
    CommissionStatus,
    CommissionSummary,
    PractitionerCreate,
    PractitionerRead,
    PractitionerUpdate,
)
from app.services.commission_service import commission_service

router = APIRouter(prefix="/commissions", tags=["Provvigioni"])

practitioners_router = APIRouter(prefix="/practitioners", tags=["Intervenienti"])


# -------------------------------------------------------------------
# Intervenienti
# -------------------------------------------------------------------

@practitioners_router.get("/", response_model=List[PractitionerRead])
async def get_practitioners(ctx: Context, db: AsyncSession = Depends(get_db)):
    """Recupera la lista degli intervenienti attivi."""
    return await commission_service.get_practitioners(db, ctx)


@practitioners_router.post("/", response_model=PractitionerRead, status_code=status.HTTP_201_CREATED)
async def create_practitioner(
    data: PractitionerCreate,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Crea un nuovo interveniente."""
    return await commission_service.create_practitioner(db, ctx, data)


@practitioners_router.get("/{id}", response_model=PractitionerRead)
async def get_practitioner(id: uuid.UUID, ctx: Context, db: AsyncSession = Depends(get_db)):
    return await commission_service.get_practitioner(db, ctx, id)


@practitioners_router.put("/{id}", response_model=PractitionerRead)
async def update_practitioner(
    id: uuid.UUID,
    data: PractitionerUpdate,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Aggiorna un interveniente e la sua base provvigionale."""
    return await commission_service.update_practitioner(db, ctx, id, data)


# -------------------------------------------------------------------
# Provvigioni
# -------------------------------------------------------------------

@router.get("/", response_model=List[CommissionRead])
async def get_commissions(
    ctx: Context,
    period: Optional[str] = Query(None, pattern=PERIOD_PATTERN),
    practitioner_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Lista provvigioni per periodo, interveniente o stato."""
    filters = CommissionFilter(period=period, practitioner_id=practitioner_id, status=status_filter)
    return await commission_service.get_all(db, ctx, filters, skip=skip, limit=limit)


@router.get("/summary/{period}", response_model=List[CommissionSummary])
async def get_commission_summary(period: str, ctx: Context, db: AsyncSession = Depends(get_db)):
    """Totali del periodo per interveniente."""
    return await commission_service.get_summary(db, ctx, period)


@router.post("/calculate", response_model=CommissionRead, status_code=status.HTTP_201_CREATED)
async def calculate_commission(
    data: CommissionCalculate,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Calcola (o ricalcola) la provvigione per una fattura o prestazione."""
    return await commission_service.calculate_for_invoice(db, ctx, data)


@router.post("/calculate-period", response_model=List[CommissionRead], status_code=status.HTTP_201_CREATED)
async def calculate_period(
    data: CommissionBatch,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Calcolo in blocco del periodo: se una voce è già pagata non viene salvato nulla."""
    return await commission_service.calculate_period(db, ctx, data)


@router.post("/{commission_id}/pay", response_model=CommissionRead)
async def mark_commission_paid(
    commission_id: uuid.UUID,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    return await commission_service.mark_paid(db, ctx, commission_id)
