import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import Context
from app.schemas.cash_session import (
    CashSessionClose,
    CashSessionFilter,
    CashSessionOpen,
    CashSessionRead,
)
from app.services.cash_session_service import CashSessionService

router = APIRouter(prefix="/cash-sessions", tags=["Sessioni di Cassa"])


@router.post("/open", response_model=CashSessionRead, status_code=status.HTTP_201_CREATED)
async def open_cash_session(
    data: CashSessionOpen,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Apre la cassa dell'operatore corrente."""
    return await CashSessionService.open(
        ctx=ctx,
        opening_balance=data.opening_balance,
        currency=data.currency,
        notes=data.notes,
        db=db,
    )


@router.get("/current", response_model=CashSessionRead)
async def get_current_cash_session(
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Sessione aperta dell'operatore corrente."""
    return await CashSessionService.get_current(ctx, db)


@router.get("/history", response_model=List[CashSessionRead])
async def get_cash_session_history(
    ctx: Context,
    actor_id: Optional[uuid.UUID] = Query(None),
    is_open: Optional[bool] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Storico delle sessioni di cassa."""
    filters = CashSessionFilter(
        actor_id=actor_id,
        is_open=is_open,
        from_date=from_date,
        to_date=to_date,
    )
    return await CashSessionService.get_history(ctx, filters, db, skip, limit)


@router.get("/{session_id}", response_model=CashSessionRead)
async def get_cash_session(
    session_id: uuid.UUID,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    return await CashSessionService.get_by_id(ctx, session_id, db)


@router.post("/{session_id}/close", response_model=CashSessionRead)
async def close_cash_session(
    session_id: uuid.UUID,
    data: CashSessionClose,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
):
    """Chiude la sessione calcolando saldo atteso e differenza."""
    return await CashSessionService.close(
        ctx=ctx,
        session_id=session_id,
        closing_balance=data.closing_balance,
        notes=data.notes,
        db=db,
    )
