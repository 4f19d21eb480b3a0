"""
Router FastAPI per la Fatturazione
Progetto: Clinic Ledger (Gestionale Clinica)

Definisce gli endpoint API per le fatture: creazione, validazione,
annullamento, righe, pagamenti e report incassi.
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import Context
from app.schemas.invoice import (
    InvoiceCancel,
    InvoiceCreate,
    InvoiceFilter,
    InvoiceItemCreate,
    InvoiceList,
    InvoiceRead,
    InvoiceStatus,
    PaymentCreate,
    PaymentFilter,
    PaymentRead,
    RevenueReport,
)
from app.services.invoice_service import invoice_service
from app.services.payment_service import payment_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Fatturazione"],
)


# -------------------------------------------------------------------
# Endpoints per Fatture
# -------------------------------------------------------------------

@router.get(
    "/",
    name="fatture_lista",
    summary="Lista fatture",
    description="Recupera la lista paginata delle fatture con eventuali filtri.",
    response_model=InvoiceList,
    status_code=status.HTTP_200_OK,
)
async def get_invoices(
    ctx: Context,
    patient_id: Optional[uuid.UUID] = Query(
        None,
        description="Filtro per UUID paziente"
    ),
    status_filter: Optional[InvoiceStatus] = Query(
        None,
        alias="status",
        description="Filtro per stato (draft, validated, partially_paid, paid, cancelled)"
    ),
    from_date: Optional[date] = Query(
        None,
        description="Data inizio periodo (formato: YYYY-MM-DD)"
    ),
    to_date: Optional[date] = Query(
        None,
        description="Data fine periodo (formato: YYYY-MM-DD)"
    ),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(10, ge=1, le=100, description="Elementi per pagina"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceList:
    """
    Recupera la lista paginata delle fatture.

    Filtri disponibili:
    - patient_id: filtra per paziente
    - status: filtra per stato
    - from_date/to_date: intervallo date fattura
    """
    filters = InvoiceFilter(
        patient_id=patient_id,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
    )
    return await invoice_service.get_all(db, ctx, filters, page=page, per_page=per_page)


@router.post(
    "/",
    name="crea_fattura",
    summary="Crea fattura",
    description="Crea una fattura in bozza con totale esplicito oppure con righe.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    ctx: Context,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.create(db, ctx, data)


@router.get(
    "/reports/revenue",
    name="report_incassi",
    summary="Report incassi",
    description="Totali fatturati, coperti, scontati e incassati nel periodo.",
    response_model=RevenueReport,
)
async def get_revenue_report(
    ctx: Context,
    from_date: date = Query(..., description="Data inizio periodo"),
    to_date: date = Query(..., description="Data fine periodo"),
    db: AsyncSession = Depends(get_db),
) -> RevenueReport:
    return await invoice_service.get_revenue_report(db, ctx, from_date, to_date)


@router.get(
    "/number/{invoice_number}",
    name="fattura_per_numero",
    summary="Fattura per numero",
    description="Recupera una fattura tramite il numero progressivo.",
    response_model=InvoiceRead,
)
async def get_invoice_by_number(
    ctx: Context,
    invoice_number: str = Path(..., description="Numero fattura (es. F-2025-000001)"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.get_by_invoice_number(db, ctx, invoice_number)


@router.get(
    "/{invoice_id}",
    name="fattura_dettaglio",
    summary="Dettaglio fattura",
    description="Recupera il dettaglio di una fattura con righe e pagamenti.",
    response_model=InvoiceRead,
)
async def get_invoice(
    ctx: Context,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.get_by_id(db, ctx, invoice_id)


@router.post(
    "/{invoice_id}/items",
    name="aggiungi_riga_fattura",
    summary="Aggiungi riga",
    description="Aggiunge una riga a una fattura in bozza e ricalcola gli importi.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_invoice_item(
    data: InvoiceItemCreate,
    ctx: Context,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.add_item(db, ctx, invoice_id, data)


@router.post(
    "/{invoice_id}/validate",
    name="valida_fattura",
    summary="Valida fattura",
    description="Finalizza una fattura in bozza.",
    response_model=InvoiceRead,
)
async def validate_invoice(
    ctx: Context,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await invoice_service.validate(db, ctx, invoice_id)


@router.post(
    "/{invoice_id}/cancel",
    name="annulla_fattura",
    summary="Annulla fattura",
    description="Annulla una fattura non pagata. L'operazione non è reversibile.",
    response_model=InvoiceRead,
)
async def cancel_invoice(
    ctx: Context,
    data: Optional[InvoiceCancel] = None,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    reason = data.reason if data else None
    return await invoice_service.cancel(db, ctx, invoice_id, reason)


# -------------------------------------------------------------------
# Endpoints per Pagamenti
# -------------------------------------------------------------------

@router.post(
    "/{invoice_id}/payments",
    name="registra_pagamento",
    summary="Registra pagamento",
    description=(
        "Applica un pagamento alla fattura. I pagamenti in contanti vengono "
        "registrati nella sessione di cassa aperta dell'operatore."
    ),
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def apply_payment(
    data: PaymentCreate,
    ctx: Context,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await payment_service.apply(db, ctx, invoice_id, data)


@router.get(
    "/{invoice_id}/payments",
    name="pagamenti_fattura",
    summary="Pagamenti della fattura",
    description="Recupera i pagamenti registrati su una fattura.",
    response_model=list[PaymentRead],
)
async def get_invoice_payments(
    ctx: Context,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentRead]:
    return await payment_service.get_all(db, ctx, PaymentFilter(invoice_id=invoice_id))
